"""
Signature Registry - Latest signature per domain
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from confluence.shared.types import DomainSignature

logger = logging.getLogger(__name__)

class SignatureRegistry:

    def __init__(self):
        self._signatures: Dict[str, DomainSignature] = {}

    def ingest_signature(self, domain: str, signature: DomainSignature):
        """Store the latest signature for a domain"""
        if not isinstance(signature, DomainSignature):
            logger.warning(f"Ignoring non-signature value for domain {domain}")
            return
        if signature.domain != domain:
            logger.debug(f"Signature domain {signature.domain} registered under {domain}")
        self._signatures[domain] = signature

    def get(self, domain: str) -> Optional[DomainSignature]:
        return self._signatures.get(domain)

    def remove(self, domain: str) -> bool:
        return self._signatures.pop(domain, None) is not None

    def domains(self) -> List[str]:
        return sorted(self._signatures)

    def signatures(self) -> Mapping[str, DomainSignature]:
        return MappingProxyType(self._signatures)

    def __len__(self) -> int:
        return len(self._signatures)

    def __contains__(self, domain: str) -> bool:
        return domain in self._signatures
