"""
Proof lifecycle tests: registration, retrieval, verification and the
anchor-update transition, end to end over in-memory collaborators.
"""

import dataclasses
import threading
import unittest

from proofseal import cipher
from proofseal.anchor import AnchorRequest, AnchorService, LocalAnchorService
from proofseal.blobs import InMemoryBlobStore
from proofseal.cipher import CipherEngine
from proofseal.errors import (
    AccessDeniedError,
    IntegrityError,
    MissingCredentialError,
    NotFoundError,
    ValidationError,
)
from proofseal.evaluator import Credential
from proofseal.hashing import hash_of
from proofseal.lifecycle import DraftStage, ProofLifecycle
from proofseal.logging_config import AuditLogger
from proofseal.policy import AccessMode, InMemoryPolicyStore
from proofseal.records import InMemoryProofStore

PDF = b"%PDF-1.4 test"


class SpyCipher(CipherEngine):
    """Records every decrypt call."""

    def __init__(self):
        self.decrypt_calls = 0

    def decrypt(self, ciphertext, key):
        self.decrypt_calls += 1
        return super().decrypt(ciphertext, key)


class FailingAnchor(AnchorService):

    def register(self, request):
        raise RuntimeError("anchor offline")


class FailingBlobStore(InMemoryBlobStore):

    def put(self, data, name):
        raise OSError("disk full")


class RecordingAudit(AuditLogger):
    """Keeps every anchor update instead of logging it."""

    def __init__(self):
        super().__init__()
        self.anchor_updates = []

    def anchor_updated(self, proof_code, previous_tx_id, anchor_tx_id):
        self.anchor_updates.append((previous_tx_id, anchor_tx_id))


class LifecycleTestCase(unittest.TestCase):

    def setUp(self):
        self.policy_store = InMemoryPolicyStore()
        self.blob_store = InMemoryBlobStore()
        self.anchor = LocalAnchorService()
        self.proof_store = InMemoryProofStore()
        self.cipher = SpyCipher()
        self.lifecycle = self.build()

    def build(self, **overrides):
        kwargs = dict(
            policy_store=self.policy_store,
            blob_store=self.blob_store,
            anchor_service=self.anchor,
            proof_store=self.proof_store,
            cipher=self.cipher,
        )
        kwargs.update(overrides)
        return ProofLifecycle(**kwargs)


class TestEndToEnd(LifecycleTestCase):

    def test_owner_only_round_trip(self):
        result = self.lifecycle.register(PDF, "0xabc", access_mode="owner_only")
        code = result.record.proof_code

        self.assertEqual(self.lifecycle.retrieve(code, Credential.of("0xabc")), PDF)
        with self.assertRaises(AccessDeniedError):
            self.lifecycle.retrieve(code, Credential.of("0xdef"))

    def test_generated_secret_code_round_trip(self):
        result = self.lifecycle.register(PDF, "0xabc", access_mode="secret_code")
        self.assertTrue(result.code_generated)
        secret = result.secret_access_code
        self.assertEqual(len(secret), 16)
        int(secret, 16)

        proof_code = result.record.proof_code
        self.assertEqual(self.lifecycle.retrieve(proof_code, Credential.of(secret_code=secret)), PDF)

        if secret.upper() == secret:
            # All digits: register again with a code that has letters
            secret = "abcDEF0123456789"
            proof_code = self.lifecycle.register(
                PDF, "0xabc", access_mode="secret_code", secret_access_code=secret
            ).record.proof_code
        flipped = secret.swapcase()
        self.assertNotEqual(flipped, secret)
        with self.assertRaises(AccessDeniedError):
            self.lifecycle.retrieve(proof_code, Credential.of(secret_code=flipped))

    def test_specific_wallets_case_insensitive_viewer(self):
        result = self.lifecycle.register(
            PDF, "0xabc", access_mode="specific_wallets", allowed_viewers=["0x111"]
        )
        code = result.record.proof_code

        self.assertEqual(self.lifecycle.retrieve(code, Credential.of("0X111")), PDF)
        with self.assertRaises(AccessDeniedError):
            self.lifecycle.retrieve(code, Credential.of("0x222"))

    def test_corrupted_ciphertext_never_reaches_decrypt(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        stored = self.blob_store._blobs[record.content_id]
        self.blob_store._blobs[record.content_id] = stored[:30] + bytes([stored[30] ^ 0x01]) + stored[31:]

        with self.assertRaises(IntegrityError) as ctx:
            self.lifecycle.retrieve(record.proof_code, Credential.of("0xabc"))
        self.assertEqual(ctx.exception.stage, "ciphertext_hash")
        self.assertEqual(self.cipher.decrypt_calls, 0)


class TestIntegrityChecks(LifecycleTestCase):

    def test_hash_check_blocks_a_ciphertext_that_would_decrypt(self):
        """A validly sealed replacement still fails the stored ciphertext hash."""
        record = self.lifecycle.register(PDF, "0xabc").record
        key = self.policy_store.lookup(record.seal_object_id).encryption_key

        replacement = cipher.encrypt(b"%PDF-1.4 forged", key)
        self.assertEqual(cipher.decrypt(replacement, key), b"%PDF-1.4 forged")
        self.blob_store._blobs[record.content_id] = replacement

        with self.assertRaises(IntegrityError) as ctx:
            self.lifecycle.retrieve(record.proof_code, Credential.of("0xabc"))
        self.assertEqual(ctx.exception.stage, "ciphertext_hash")
        self.assertEqual(self.cipher.decrypt_calls, 0)

    def test_plaintext_hash_checked_after_decrypt(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        self.proof_store._records[record.proof_code] = dataclasses.replace(
            record, plaintext_hash=hash_of(b"something else")
        )

        with self.assertRaises(IntegrityError) as ctx:
            self.lifecycle.retrieve(record.proof_code, Credential.of("0xabc"))
        self.assertEqual(ctx.exception.stage, "plaintext_hash")
        self.assertEqual(self.cipher.decrypt_calls, 1)

    def test_integrity_failure_is_audited(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        self.blob_store._blobs[record.content_id] = b"\x00" * 64

        with self.assertLogs("proofseal.audit", level="ERROR") as logs:
            with self.assertRaises(IntegrityError):
                self.lifecycle.retrieve(record.proof_code, Credential.of("0xabc"))
        self.assertTrue(any("ciphertext_hash" in line for line in logs.output))

    def test_access_checked_before_integrity(self):
        """An unauthorized caller learns nothing about blob corruption."""
        record = self.lifecycle.register(PDF, "0xabc").record
        self.blob_store._blobs[record.content_id] = b"\x00" * 64

        with self.assertRaises(AccessDeniedError):
            self.lifecycle.retrieve(record.proof_code, Credential.of("0xdef"))

    def test_declared_plaintext_hash_must_match(self):
        with self.assertRaises(IntegrityError) as ctx:
            self.lifecycle.register(PDF, "0xabc", expected_plaintext_hash=hash_of(b"other"))
        self.assertEqual(ctx.exception.stage, "plaintext_hash")
        self.assertEqual(ctx.exception.step, "hash_plaintext")
        self.assertEqual(self.policy_store.count(), 0)
        self.assertEqual(self.lifecycle.incomplete_registrations(), [])

    def test_malformed_declared_hash_is_validation_error(self):
        with self.assertRaises(ValidationError) as ctx:
            self.lifecycle.register(PDF, "0xabc", expected_plaintext_hash="0x" + "a" * 62)
        self.assertNotIsInstance(ctx.exception, IntegrityError)
        self.assertEqual(ctx.exception.step, "hash_plaintext")

    def test_declared_plaintext_hash_accepted(self):
        result = self.lifecycle.register(PDF, "0xabc", expected_plaintext_hash="sha256:" + hash_of(PDF).upper())
        self.assertEqual(result.record.plaintext_hash, hash_of(PDF))


class TestRegistration(LifecycleTestCase):

    def test_record_fields(self):
        result = self.lifecycle.register(PDF, "0xAbc", document_name="cv.pdf")
        record = result.record

        self.assertTrue(record.proof_code.startswith("PRF-"))
        self.assertEqual(record.owner_address, "0xAbc")
        self.assertEqual(record.plaintext_hash, hash_of(PDF))
        self.assertEqual(record.ciphertext_hash, hash_of(self.blob_store.get(record.content_id)))
        self.assertEqual(record.document_name, "cv.pdf")
        self.assertEqual(self.blob_store._names[record.content_id], "cv.pdf")
        self.assertEqual(self.lifecycle.access_mode_of(record), AccessMode.OWNER_ONLY)
        self.assertIsNone(result.secret_access_code)
        self.assertNotIn("secret_access_code", result.to_dict())

    def test_anchor_keeps_only_recent_requests(self):
        anchor = LocalAnchorService(history=2)
        request = AnchorRequest("a" * 64, "blob", "0xabc", "seal", "b" * 64)
        codes = [anchor.register(request).proof_code for _ in range(3)]

        self.assertEqual(len(anchor.requests), 2)
        self.assertEqual(len(set(codes)), 3)

    def test_anchor_receives_registration_fields(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        self.assertEqual(len(self.anchor.requests), 1)
        request = self.anchor.requests[0]

        self.assertEqual(request.plaintext_hash, record.plaintext_hash)
        self.assertEqual(request.ciphertext_hash, record.ciphertext_hash)
        self.assertEqual(request.content_id, record.content_id)
        self.assertEqual(request.seal_object_id, record.seal_object_id)
        self.assertEqual(request.owner_identity, "0xabc")

    def test_supplied_secret_code_is_returned_not_generated(self):
        result = self.lifecycle.register(PDF, "0xabc", access_mode="secret_code", secret_access_code="MyCode-42")
        self.assertEqual(result.secret_access_code, "MyCode-42")
        self.assertFalse(result.code_generated)

    def test_code_not_in_record_or_result_repr(self):
        result = self.lifecycle.register(PDF, "0xabc", access_mode="secret_code", secret_access_code="MyCode-42")
        self.assertNotIn("MyCode-42", str(result.record.to_dict()))
        self.assertNotIn("MyCode-42", repr(result))

    def test_stored_blob_is_not_plaintext(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        stored = self.blob_store.get(record.content_id)
        self.assertNotIn(PDF, stored)
        self.assertEqual(len(stored), len(PDF) + cipher.OVERHEAD)

    def test_each_registration_gets_its_own_seal(self):
        a = self.lifecycle.register(PDF, "0xabc").record
        b = self.lifecycle.register(PDF, "0xabc").record
        self.assertNotEqual(a.proof_code, b.proof_code)
        self.assertNotEqual(a.seal_object_id, b.seal_object_id)
        self.assertNotEqual(a.ciphertext_hash, b.ciphertext_hash)
        self.assertEqual(a.plaintext_hash, b.plaintext_hash)


class TestRegistrationValidation(LifecycleTestCase):

    def test_empty_document_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.lifecycle.register(b"", "0xabc")
        self.assertEqual(ctx.exception.step, "validate")

    def test_oversize_document_rejected(self):
        lifecycle = self.build(max_document_bytes=8)
        with self.assertRaises(ValidationError):
            lifecycle.register(PDF, "0xabc")
        self.assertEqual(self.policy_store.count(), 0)

    def test_blank_owner_rejected(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.register(PDF, "  ")

    def test_viewers_with_owner_only_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.lifecycle.register(PDF, "0xabc", access_mode="owner_only", allowed_viewers=["0x111"])
        self.assertEqual(ctx.exception.step, "resolve_policy")
        self.assertEqual(self.policy_store.count(), 0)
        self.assertEqual(self.blob_store.count(), 0)

    def test_unknown_mode_rejected(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.register(PDF, "0xabc", access_mode="everyone")


class TestIncompleteRegistrations(LifecycleTestCase):

    def test_anchor_failure_leaves_tracked_draft(self):
        lifecycle = self.build(anchor_service=FailingAnchor())

        with self.assertRaises(RuntimeError):
            lifecycle.register(PDF, "0xabc")

        drafts = lifecycle.incomplete_registrations()
        self.assertEqual(len(drafts), 1)
        draft = drafts[0]
        self.assertEqual(draft.stage, DraftStage.STORED)
        self.assertEqual(draft.failed_step, "anchor")
        self.assertIn("anchor offline", draft.error)
        self.assertIsNotNone(draft.content_id)
        self.assertIsNone(draft.proof_code)

        # Nothing is rolled back
        self.assertEqual(self.blob_store.get(draft.content_id) is not None, True)
        self.policy_store.lookup(draft.seal_object_id)
        self.assertEqual(self.proof_store.count(), 0)

    def test_upload_failure_after_seal_created(self):
        lifecycle = self.build(blob_store=FailingBlobStore())

        with self.assertRaises(OSError):
            lifecycle.register(PDF, "0xabc")

        draft = lifecycle.incomplete_registrations()[0]
        self.assertEqual(draft.stage, DraftStage.SEALED)
        self.assertEqual(draft.failed_step, "upload")
        self.assertEqual(self.policy_store.count(), 1)

    def test_core_error_carries_step_and_draft(self):
        class DuplicateStore(InMemoryProofStore):
            def create(self, record):
                raise ValidationError("proof_code", "already registered")

        lifecycle = self.build(proof_store=DuplicateStore())
        with self.assertRaises(ValidationError) as ctx:
            lifecycle.register(PDF, "0xabc")

        err = ctx.exception
        self.assertEqual(err.step, "persist")
        self.assertEqual(err.draft.stage, DraftStage.ANCHORED)
        self.assertTrue(err.draft.proof_code.startswith("PRF-"))
        self.assertIn(err.draft, lifecycle.incomplete_registrations())

    def test_failure_before_side_effects_not_tracked(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.register(b"", "0xabc")
        self.assertEqual(self.lifecycle.incomplete_registrations(), [])

    def test_only_newest_drafts_kept(self):
        lifecycle = self.build(anchor_service=FailingAnchor(), max_incomplete_registrations=1)
        for owner in ("0xaaa", "0xbbb"):
            with self.assertRaises(RuntimeError):
                lifecycle.register(PDF, owner)

        drafts = lifecycle.incomplete_registrations()
        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].owner_identity, "0xbbb")

    def test_draft_dict_has_no_secret(self):
        lifecycle = self.build(anchor_service=FailingAnchor())
        with self.assertRaises(RuntimeError):
            lifecycle.register(PDF, "0xabc", access_mode="secret_code", secret_access_code="Hidden-7")
        self.assertNotIn("Hidden-7", str(lifecycle.incomplete_registrations()[0].to_dict()))


class TestRetrievalErrors(LifecycleTestCase):

    def test_unknown_proof_code(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.retrieve("PRF-000000000000", Credential.of("0xabc"))

    def test_malformed_proof_code(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.retrieve("PRF 1; DROP", Credential.of("0xabc"))

    def test_missing_blob_is_not_found(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        del self.blob_store._blobs[record.content_id]

        with self.assertRaises(NotFoundError) as ctx:
            self.lifecycle.retrieve(record.proof_code, Credential())
        self.assertEqual(ctx.exception.kind, "blob")

    def test_missing_credential(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        with self.assertRaises(MissingCredentialError):
            self.lifecycle.retrieve(record.proof_code, Credential())


class TestVerifyDocument(LifecycleTestCase):

    def test_matching_copy(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        self.assertEqual(self.lifecycle.verify_document(record.proof_code, PDF), record)

    def test_altered_copy(self):
        record = self.lifecycle.register(PDF, "0xabc").record
        with self.assertRaises(IntegrityError) as ctx:
            self.lifecycle.verify_document(record.proof_code, PDF + b" ")
        self.assertEqual(ctx.exception.stage, "plaintext_hash")

    def test_unknown_code(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.verify_document("PRF-000000000000", PDF)


class TestAnchorUpdate(LifecycleTestCase):

    def setUp(self):
        super().setUp()
        self.anchor = LocalAnchorService(provisional=True)
        self.lifecycle = self.build(anchor_service=self.anchor)
        self.record = self.lifecycle.register(PDF, "0xabc").record

    def test_provisional_then_confirmed(self):
        self.assertTrue(self.record.anchor_tx_id.startswith("pending:0x"))

        updated = self.lifecycle.confirm_anchor(self.record.proof_code, "0x" + "ab" * 32)
        self.assertEqual(updated.anchor_tx_id, "0x" + "ab" * 32)
        self.assertEqual(self.lifecycle.get_proof(self.record.proof_code).anchor_tx_id, "0x" + "ab" * 32)

    def test_only_anchor_changes(self):
        updated = self.lifecycle.confirm_anchor(self.record.proof_code, "0xconfirmed")
        self.assertEqual(
            dataclasses.replace(updated, anchor_tx_id=self.record.anchor_tx_id),
            self.record
        )

    def test_last_write_wins(self):
        self.lifecycle.confirm_anchor(self.record.proof_code, "0xfirst")
        self.lifecycle.confirm_anchor(self.record.proof_code, "0xsecond")
        self.assertEqual(self.lifecycle.get_proof(self.record.proof_code).anchor_tx_id, "0xsecond")

    def test_audit_reports_previous_tx_id(self):
        audit = RecordingAudit()
        lifecycle = self.build(anchor_service=self.anchor, audit=audit)
        lifecycle.confirm_anchor(self.record.proof_code, "0xfirst")
        lifecycle.confirm_anchor(self.record.proof_code, "0xsecond")

        self.assertEqual(audit.anchor_updates, [
            (self.record.anchor_tx_id, "0xfirst"),
            ("0xfirst", "0xsecond"),
        ])

    def test_concurrent_confirms_chain_previous_tx_ids(self):
        audit = RecordingAudit()
        lifecycle = self.build(anchor_service=self.anchor, audit=audit)
        tx_ids = [f"0x{i:064x}" for i in range(16)]

        threads = [
            threading.Thread(target=lifecycle.confirm_anchor, args=(self.record.proof_code, t))
            for t in tx_ids
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        previous = [p for p, _ in audit.anchor_updates]
        final = lifecycle.get_proof(self.record.proof_code).anchor_tx_id
        self.assertEqual(len(previous), len(tx_ids))
        self.assertEqual(len(set(previous)), len(previous))
        self.assertEqual(set(previous) | {final}, {self.record.anchor_tx_id} | set(tx_ids))

    def test_unknown_code(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.confirm_anchor("PRF-000000000000", "0xabc")

    def test_blank_tx_id_rejected(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.confirm_anchor(self.record.proof_code, "  ")

    def test_document_still_retrievable(self):
        self.lifecycle.confirm_anchor(self.record.proof_code, "0xconfirmed")
        self.assertEqual(self.lifecycle.retrieve(self.record.proof_code, Credential.of("0xabc")), PDF)


class TestOwnerListing(LifecycleTestCase):

    def test_list_by_owner_case_insensitive(self):
        a = self.lifecycle.register(PDF, "0xAbc").record
        b = self.lifecycle.register(b"%PDF-1.4 second", "0xabc").record
        self.lifecycle.register(PDF, "0xdef")

        records = self.lifecycle.proofs_for_owner("0XABC")
        self.assertEqual({r.proof_code for r in records}, {a.proof_code, b.proof_code})
        self.assertEqual(records, sorted(records, key=lambda r: r.created_at))

    def test_unknown_owner_is_empty(self):
        self.assertEqual(self.lifecycle.proofs_for_owner("0x999"), [])


if __name__ == "__main__":
    unittest.main()
