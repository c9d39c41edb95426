"""Unit tests for signing credential hashing and verification."""

from edc_engine.services.signing import CredentialHasher, CredentialVerifier


class TestCredentialHasher:
    """Tests for CredentialHasher."""

    def test_hash_is_deterministic_for_salt(self):
        digest, salt = CredentialHasher.hash_credential("correct horse")
        assert CredentialHasher.hash_credential("correct horse", salt) == (digest, salt)

    def test_hash_format(self):
        digest, salt = CredentialHasher.hash_credential("secret")
        assert len(digest) == 64
        assert len(salt) == 32
        int(digest, 16)

    def test_new_salt_each_time(self):
        first, _ = CredentialHasher.hash_credential("secret")
        second, _ = CredentialHasher.hash_credential("secret")
        assert first != second

    def test_plaintext_is_not_stored(self, make_member):
        member = make_member("user-pi", "pi", credential="sign-me")
        assert member.credential_hash
        assert "sign-me" not in member.credential_hash


class TestCredentialVerifier:
    """Tests for CredentialVerifier."""

    def test_correct_credential(self, db_session, make_member, study_id):
        make_member("user-pi", "pi", credential="sign-me")
        assert CredentialVerifier(db_session).verify(study_id, "user-pi", "sign-me") is True

    def test_wrong_credential(self, db_session, make_member, study_id):
        make_member("user-pi", "pi", credential="sign-me")
        assert CredentialVerifier(db_session).verify(study_id, "user-pi", "guess") is False

    def test_missing_credential(self, db_session, make_member, study_id):
        make_member("user-pi", "pi", credential="sign-me")
        verifier = CredentialVerifier(db_session)
        assert verifier.verify(study_id, "user-pi", None) is False
        assert verifier.verify(study_id, "user-pi", "") is False

    def test_member_without_credential(self, db_session, make_member, study_id):
        make_member("user-pi", "pi")
        assert CredentialVerifier(db_session).verify(study_id, "user-pi", "anything") is False

    def test_non_member(self, db_session, study_id):
        assert CredentialVerifier(db_session).verify(study_id, "stranger", "anything") is False
