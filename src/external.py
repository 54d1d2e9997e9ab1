"""
External Reference Resolver - Generic fetch and delete of referenced objects.

A missing object resolves to None. Any failure to find out raises; the two
outcomes are never conflated, since teardown decisions depend on them.
"""

import logging
from typing import Any, Dict, Optional

from client import StoreClient
from machine import ObjectReference
from scheme import Scheme

logger = logging.getLogger(__name__)


class ExternalResolver:
    """Resolves infrastructure and bootstrap references through a scheme."""

    def __init__(self, client: StoreClient, scheme: Scheme):
        self.client = client
        self.scheme = scheme

    def _prepare(self, ref: ObjectReference, namespace: str) -> ObjectReference:
        ref = ref.in_namespace(namespace)
        self.scheme.check(ref)
        return ref

    async def resolve(
        self, ref: ObjectReference, namespace: str
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch the object a reference points to.

        Args:
            ref: The reference; an empty namespace means ``namespace``.
            namespace: Namespace of the referencing Machine.

        Returns:
            The object payload, or None if it does not exist.

        Raises:
            UnknownKindError: If the reference is not in the scheme.
            TransientError: If the fetch failed.
        """
        ref = self._prepare(ref, namespace)
        payload = await self.client.get_external(ref)
        if payload is None:
            logger.debug(f"{ref} not found")
        return payload

    async def delete(self, ref: ObjectReference, namespace: str) -> None:
        """Request deletion; an already deleted or deleting object is not an error."""
        ref = self._prepare(ref, namespace)
        existed = await self.client.delete_external(ref)
        if existed:
            logger.info(f"Requested deletion of {ref}")
        else:
            logger.debug(f"{ref} already gone")
