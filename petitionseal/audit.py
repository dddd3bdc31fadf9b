"""
Public audit verification.

Anyone holding an audit hash can confirm that the signature exists and
which petition version it was made against, without learning who signed.
"""

import logging
from typing import List, Optional

from .hashing import audit_hash, image_hash, typed_signature_hash
from .models import AuditVerification, DrawnSignature, Petition, SignatureRecord
from .security import is_audit_hash
from .stores import PetitionStore, SignatureStore

logger = logging.getLogger(__name__)


class AuditVerifier:

    def __init__(self, signatures: SignatureStore, petitions: PetitionStore):
        self.signatures = signatures
        self.petitions = petitions

    def verify(self, audit_hash_value: str) -> Optional[AuditVerification]:
        """
        Look up a signature by audit hash.

        Malformed input and an unknown hash both return None. The result
        never carries the signer's email or name.
        """
        if not is_audit_hash(audit_hash_value):
            return None

        record = self.signatures.find_by_audit_hash(audit_hash_value)
        if record is None:
            return None

        petition = self.petitions.find_by_id(record.petition_id)
        if petition is None:
            logger.error("Signature %s references missing petition %s", record.id, record.petition_id)
            return None

        return AuditVerification(
            petition_title=petition.title,
            petition_version=petition.version,
            signed_at=record.created_at,
            city=record.signer.city,
            state=record.signer.state,
            country=record.signer.country,
        )


def check_record(record: SignatureRecord, petition: Optional[Petition] = None) -> List[str]:
    """
    Recompute a stored record's hashes.

    The petition hash is only checked when the petition is given, since a
    petition edited after signing legitimately no longer matches.

    Returns:
        Problems found; empty when the record is intact
    """
    problems = []

    if isinstance(record.signature, DrawnSignature):
        expected_mark = image_hash(record.signature.image)
    else:
        expected_mark = typed_signature_hash(record.signature.text)
    if expected_mark != record.signature_image_hash:
        problems.append("signature hash mismatch")

    try:
        expected_audit = audit_hash(record.audit_fields())
    except ValueError as e:
        problems.append(f"audit fields incomplete: {e}")
    else:
        if expected_audit != record.audit_hash:
            problems.append("audit hash mismatch")

    if petition is not None:
        if petition.id != record.petition_id:
            problems.append("record belongs to a different petition")
        elif petition.snapshot().content_hash() != record.petition_hash:
            problems.append("petition hash mismatch")

    return problems
