"""
Unit tests for TokenDecoder and decode().

Covers the security properties the decoder exists for: round trips, tamper
detection, refusal of "none", algorithm-confusion resistance, expiry with
skew, and the ordering of the decode stages.
"""

import hashlib
import socket

import pytest
from cryptography.hazmat.primitives import serialization
from conftest import NOW

from warrant import (
    DEFAULT_POLICY,
    DEFAULT_REGISTRY,
    Algorithm,
    AlgorithmFamily,
    ClaimsConfig,
    ClaimValidationError,
    Key,
    KeyMismatchError,
    KeyResolutionError,
    KeySet,
    PolicyViolationError,
    SecurityPolicy,
    SignatureError,
    StructuralError,
    TokenDecoder,
    TokenEncrypter,
    TokenSigner,
    UnsupportedAlgorithmError,
    build,
    decode,
    unverified_header,
)
from warrant.algorithms import Signer, Verifier
from warrant.compact import b64decode, b64encode, canonical_json, signing_input

SIGNING_ALGORITHMS = [
    "HS256", "HS384", "HS512",
    "RS256", "RS384", "RS512",
    "PS256", "PS384", "PS512",
    "ES256", "ES384", "ES512",
    "EdDSA",
]  # fmt: skip


@pytest.fixture
def keys_by_algorithm(hmac_key, rsa_key, ec_keys, ed25519_key):
    """Return a function mapping an algorithm name to a suitable key."""

    def pick(name):
        if name.startswith("HS"):
            return hmac_key
        if name.startswith(("RS", "PS")):
            return rsa_key
        if name.startswith("ES"):
            return ec_keys[{"256": "P-256", "384": "P-384", "512": "P-521"}[name[2:]]]
        return ed25519_key

    return pick


def _fixed_claims(sample_claims):
    return ClaimsConfig.from_mapping(sample_claims, generate_nonce=False)


def _flip_bit(token, index, byte):
    """Flip the lowest bit of one decoded byte of a segment and re-encode."""
    segments = token.split(".")
    raw = bytearray(b64decode(segments[index]))
    raw[byte] ^= 0x01
    segments[index] = b64encode(bytes(raw))
    return ".".join(segments)


def _hand_signed(header, payload_bytes, key, alg="HS256"):
    """Sign arbitrary header/payload bytes, bypassing the builder's checks."""
    header_segment = b64encode(canonical_json(header))
    payload_segment = b64encode(payload_bytes)
    signature = DEFAULT_REGISTRY.get(alg).sign(signing_input(header_segment, payload_segment), key)
    return f"{header_segment}.{payload_segment}.{b64encode(signature)}"


# =============================================================================
# Round trips
# =============================================================================


class TestRoundTrip:
    """decode(build(x)) gives back x."""

    @pytest.mark.parametrize("name", SIGNING_ALGORITHMS)
    def test_every_signing_algorithm(self, name, keys_by_algorithm, sample_claims, clock):
        """Claims survive a round trip through every signing algorithm."""
        signer = TokenSigner(name, keys_by_algorithm(name))
        token = build(signer, _fixed_claims(sample_claims), clock=clock).unwrap()

        result = decode(token, signer, clock=clock)

        assert result.valid, result.errors
        assert result.errors == ()
        assert result.claims == sample_claims
        assert result.header.alg == name

    @pytest.mark.parametrize("name", ["RS256", "ES384", "EdDSA"])
    def test_verify_with_public_key_only(self, name, keys_by_algorithm, sample_claims, clock):
        """The decoder needs only the public half."""
        key = keys_by_algorithm(name)
        token = build(TokenSigner(name, key), _fixed_claims(sample_claims), clock=clock).unwrap()

        result = decode(token, TokenSigner(name, key.public_key()), clock=clock)
        assert result.valid

    def test_token_fields(self, hmac_signer, sample_claims, clock):
        """The decoded Token carries its compact form and signature."""
        token = build(hmac_signer, _fixed_claims(sample_claims), clock=clock).unwrap()
        decoded = decode(token, hmac_signer, clock=clock).unwrap()

        assert decoded.compact == token
        assert str(decoded) == token
        assert len(decoded.signature) == 32
        assert decoded.is_encrypted is False
        assert decoded.claims.jti == "10"

    def test_bytes_token(self, hmac_signer):
        """ASCII bytes are accepted as a token."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        assert decode(token.encode("ascii"), hmac_signer).valid

    def test_token_is_hashable(self, hmac_signer):
        """Decoded tokens and their headers can be hashed and compared."""
        token = build(hmac_signer, {"jti": "10"}, headers={"x-tenant": "acme"}).unwrap()
        first = decode(token, hmac_signer).unwrap()
        second = decode(token, hmac_signer).unwrap()

        assert first == second
        assert hash(first) == hash(second)
        assert hash(first.header) == hash(second.header)
        assert len({first, second}) == 1

    def test_decoder_is_reusable(self, hmac_signer):
        """One decoder handles many tokens."""
        decoder = TokenDecoder(hmac_signer)
        tokens = [build(hmac_signer, {"jti": str(i)}).unwrap() for i in range(3)]
        assert [decoder.decode(t).claims.jti for t in tokens] == ["0", "1", "2"]


class TestScenario:
    """The shared-secret HS256 scenario."""

    def test_same_key_succeeds(self):
        """Key 'secret' / kid 'key_id' / jti '10' round trips."""
        key = Key.from_secret(b"secret", kid="key_id")
        token = build(TokenSigner("HS256", key), ClaimsConfig(jti="10")).unwrap()

        result = decode(token, TokenSigner("HS256", key))

        assert result.valid
        assert result.claims.jti == "10"

    def test_different_key_fails_once(self):
        """A different secret yields exactly one SignatureError and no claims."""
        key = Key.from_secret(b"secret", kid="key_id")
        token = build(TokenSigner("HS256", key), ClaimsConfig(jti="10")).unwrap()

        wrong = Key.from_secret(b"secreT", kid="key_id")
        result = decode(token, TokenSigner("HS256", wrong))

        assert len(result.errors) == 1
        assert isinstance(result.errors[0], SignatureError)
        assert result.token is None
        assert result.claims is None
        assert result.valid is False


# =============================================================================
# Integrity
# =============================================================================


class TestTamperDetection:
    """Any flipped bit in payload or signature fails verification."""

    @pytest.mark.parametrize("name", ["HS256", "PS256", "ES256", "EdDSA"])
    @pytest.mark.parametrize("index,byte", [(1, 0), (1, 17), (1, -1), (2, 5), (2, -1)])
    def test_flipped_bit(self, name, index, byte, keys_by_algorithm, sample_claims, clock):
        """Flipping a bit yields SignatureError and hides the claims."""
        signer = TokenSigner(name, keys_by_algorithm(name))
        token = build(signer, _fixed_claims(sample_claims), clock=clock).unwrap()

        result = decode(_flip_bit(token, index, byte), signer, clock=clock)

        assert [type(e) for e in result.errors] == [SignatureError]
        assert result.claims is None

    def test_swapped_payload(self, hmac_signer, clock):
        """A payload from another token does not verify under this signature."""
        first = build(hmac_signer, {"jti": "1"}, clock=clock).unwrap().split(".")
        second = build(hmac_signer, {"jti": "2"}, clock=clock).unwrap().split(".")

        forged = ".".join([first[0], second[1], first[2]])
        assert decode(forged, hmac_signer, clock=clock).has_error(SignatureError)

    def test_stripped_signature(self, hmac_signer):
        """An empty signature segment on an HS256 token fails."""
        header, payload, _ = build(hmac_signer, {"jti": "10"}).unwrap().split(".")
        result = decode(f"{header}.{payload}.", hmac_signer)
        assert result.has_error(SignatureError)


# =============================================================================
# "none" and algorithm confusion
# =============================================================================


class TestUnsecuredTokens:
    """'none' is only accepted when both ends opt in."""

    @pytest.fixture
    def unsecured_token(self):
        policy = SecurityPolicy.default(allow_none=True)
        return build(TokenSigner("none"), {"jti": "10"}, policy=policy).unwrap()

    def test_rejected_by_default(self, unsecured_token):
        """The default policy refuses alg=none."""
        result = decode(unsecured_token, TokenSigner("none"))
        assert [type(e) for e in result.errors] == [PolicyViolationError]
        assert result.claims is None

    def test_rejected_when_expecting_a_real_algorithm(self, unsecured_token, hmac_signer):
        """A none token does not pass for HS256."""
        result = decode(unsecured_token, hmac_signer, policy=SecurityPolicy.default(allow_none=True))
        assert [type(e) for e in result.errors] == [PolicyViolationError]

    def test_accepted_when_allowed(self, unsecured_token):
        """With allow_none on decode too, the token is accepted."""
        result = decode(
            unsecured_token, TokenSigner("none"), policy=DEFAULT_POLICY.with_algorithm_added("none")
        )
        assert result.valid
        assert result.claims.jti == "10"

    def test_none_with_signature_rejected(self, unsecured_token):
        """alg=none with a non-empty signature segment is not accepted."""
        result = decode(
            unsecured_token + "AAAA",
            TokenSigner("none"),
            policy=SecurityPolicy.default(allow_none=True),
        )
        assert result.has_error(SignatureError)

    def test_forged_none_header(self, hmac_signer):
        """Rewriting a signed token's header to alg=none does not help."""
        _, payload, _ = build(hmac_signer, {"jti": "10"}).unwrap().split(".")
        header = b64encode(canonical_json({"alg": "none", "kid": "key_id"}))

        result = decode(f"{header}.{payload}.", hmac_signer)
        assert [type(e) for e in result.errors] == [PolicyViolationError]


class TestAlgorithmConfusion:
    """The header never selects the verification algorithm."""

    def test_hs256_token_expected_rs256(self, hmac_signer, rsa_key):
        """An HS256 token decoded as RS256 is a PolicyViolationError."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        result = decode(token, TokenSigner("RS256", rsa_key.public_key()))
        assert [type(e) for e in result.errors] == [PolicyViolationError]

    def test_public_key_as_hmac_secret(self, rsa_key):
        """The classic RS256 -> HS256 downgrade is refused before any MAC check."""
        pem = rsa_key.public_key().material.public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        forged = build(TokenSigner("HS256", Key.from_secret(pem, kid="rsa-1")), {"sub": "admin"}).unwrap()

        result = decode(forged, TokenSigner("RS256", rsa_key.public_key()))
        assert [type(e) for e in result.errors] == [PolicyViolationError]

    def test_same_family_different_hash(self, hmac_signer, hmac_key):
        """HS256 is not HS384."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        result = decode(token, TokenSigner("HS384", hmac_key))
        assert [type(e) for e in result.errors] == [PolicyViolationError]

    def test_expected_algorithm_not_permitted(self, hmac_signer):
        """A matching algorithm the policy forbids is still refused."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        result = decode(token, hmac_signer, policy=DEFAULT_POLICY.with_algorithms(["ES256"]))
        assert [type(e) for e in result.errors] == [PolicyViolationError]

    def test_unknown_expected_algorithm(self, hmac_key):
        """Expecting an unregistered algorithm is unsupported."""
        token = _hand_signed({"alg": "HS999"}, b"{}", hmac_key)
        result = decode(token, TokenSigner("HS999", hmac_key))
        assert [type(e) for e in result.errors] == [UnsupportedAlgorithmError]

    def test_jwe_algorithm_as_jws(self, hmac_key):
        """A key management algorithm cannot verify a JWS."""
        token = _hand_signed({"alg": "A128KW"}, b"{}", hmac_key)
        result = decode(token, TokenSigner("A128KW", hmac_key))
        assert [type(e) for e in result.errors] == [UnsupportedAlgorithmError]


# =============================================================================
# Claims
# =============================================================================


class TestClaimValidation:
    """Stage 6: claims of a verified token."""

    def test_expiry_boundary_with_skew(self, hmac_signer, clock):
        """exp = now - 1s passes within a 5s skew and fails 10s later."""
        token = build(hmac_signer, {"jti": "10", "exp": NOW - 1}, clock=clock).unwrap()
        policy = DEFAULT_POLICY.with_skew(5)

        assert decode(token, hmac_signer, policy=policy, clock=clock).valid

        clock.advance(10)
        result = decode(token, hmac_signer, policy=policy, clock=clock)

        assert not result.valid
        assert [(type(e), e.reason) for e in result.errors] == [(ClaimValidationError, "expired")]

    def test_expired_token_keeps_claims(self, hmac_signer, clock):
        """Claim errors still expose the verified claims for inspection."""
        token = build(hmac_signer, {"jti": "10", "exp": NOW - 60}, clock=clock).unwrap()
        result = decode(token, hmac_signer, clock=clock)

        assert result.valid is False
        assert result.token is not None
        assert result.claims.jti == "10"
        with pytest.raises(ClaimValidationError):
            result.unwrap()

    def test_not_yet_valid(self, hmac_signer, clock):
        """nbf in the future fails."""
        token = build(hmac_signer, {"nbf": NOW + 60}, clock=clock).unwrap()
        result = decode(token, hmac_signer, clock=clock)
        assert [e.reason for e in result.errors] == ["not_yet_valid"]

    def test_required_claims(self, hmac_signer, clock):
        """Missing required claims are reported."""
        token = build(hmac_signer, {"jti": "10"}, clock=clock).unwrap()
        policy = DEFAULT_POLICY.with_required_claims("sub", "exp")
        result = decode(token, hmac_signer, policy=policy, clock=clock)
        assert sorted(e.claim for e in result.errors) == ["exp", "sub"]

    def test_all_claim_errors_together(self, hmac_signer, clock):
        """Every claim problem is reported in one result."""
        token = build(
            hmac_signer,
            {"iss": "evil", "aud": "other", "exp": NOW - 60, "nbf": NOW - 120},
            clock=clock,
        ).unwrap()
        clock.advance(-200)  # before nbf, long before exp
        policy = (
            DEFAULT_POLICY.with_required_claims("sub")
            .with_issuer("good")
            .with_audience("api")
        )
        result = decode(token, hmac_signer, policy=policy, clock=clock)

        assert sorted(e.reason for e in result.errors) == [
            "invalid_audience",
            "invalid_issuer",
            "missing",
            "not_yet_valid",
        ]

    def test_malformed_claim_in_verified_token(self, hmac_key):
        """A validly signed token with a string exp is malformed, not expired."""
        token = _hand_signed({"alg": "HS256"}, b'{"exp":"never"}', hmac_key)
        result = decode(token, TokenSigner("HS256", hmac_key))
        assert [e.reason for e in result.errors] == ["malformed"]
        assert result.claims["exp"] == "never"

    @pytest.mark.parametrize("exp", [b"9" * 400, b"1e400"])
    def test_numeric_date_out_of_range(self, hmac_key, exp):
        """A validly signed exp beyond float range is malformed, not a crash."""
        token = _hand_signed({"alg": "HS256"}, b'{"exp":' + exp + b',"jti":"10"}', hmac_key)
        result = decode(token, TokenSigner("HS256", hmac_key))

        assert [(e.reason, e.claim) for e in result.errors] == [("malformed", "exp")]
        assert result.claims.jti == "10"
        assert result.claims.expires_at is None

    def test_issuer_and_audience_match(self, hmac_signer, sample_claims, clock):
        """Matching issuer and audience pass."""
        token = build(hmac_signer, _fixed_claims(sample_claims), clock=clock).unwrap()
        policy = DEFAULT_POLICY.with_issuer(sample_claims["iss"]).with_audience(sample_claims["aud"][0])
        assert decode(token, hmac_signer, policy=policy, clock=clock).valid


# =============================================================================
# Structure and headers
# =============================================================================


class TestStructuralErrors:
    """Stages 1 and 2 halt with a StructuralError."""

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "abc",
            "a.b",
            "a.b.c.d",
            "eyJhbGciOiJIUzI1NiJ9.e30.!!!!",
            "eyJhbGciOiJIUzI1NiJ9=.e30.AAAA",
            "eyJhbGciOiJIUzI1NiJ9.e30.A",
            "eyJhbGciOiJIUzI1NiJ9 .e30.AAAA",
        ],
    )
    def test_malformed_structure(self, token, hmac_signer):
        """Bad segment counts and bad base64url are structural errors."""
        result = decode(token, hmac_signer)
        assert [type(e) for e in result.errors] == [StructuralError]
        assert result.token is None

    def test_non_canonical_base64(self, hmac_signer):
        """Non-zero trailing bits make a segment non-canonical."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        header, payload, signature = token.split(".")
        # 32-byte MAC: 43 characters, the last carrying 2 unused bits
        last = signature[-1]
        twin = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
        bumped = twin[twin.index(last) ^ 0x01]
        result = decode(f"{header}.{payload}.{signature[:-1]}{bumped}", hmac_signer)
        assert [type(e) for e in result.errors] == [StructuralError]

    def test_non_ascii_bytes(self, hmac_signer):
        """Non-ASCII bytes are rejected."""
        assert decode("é.e30.AAAA".encode("utf-8"), hmac_signer).has_error(StructuralError)

    def test_not_a_string(self, hmac_signer):
        """None is not a token."""
        assert decode(None, hmac_signer).has_error(StructuralError)

    def test_too_long(self, hmac_signer, monkeypatch):
        """Tokens over the configured length are refused before parsing."""
        from warrant import config

        monkeypatch.setattr(config, "MAX_TOKEN_LENGTH", 20)
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        assert decode(token, hmac_signer).has_error(StructuralError)

    def test_jwe_given_to_jws_decoder(self, hmac_signer):
        """A five-segment token is not a JWS."""
        jwe = build(TokenEncrypter("dir", "A128GCM", Key.from_secret(bytes(16))), {}).unwrap()
        assert decode(jwe, hmac_signer).has_error(StructuralError)

    @pytest.mark.parametrize(
        "header",
        [
            b"[]",
            b"not json",
            b'{"typ":"JWT"}',
            b'{"alg":"HS256","alg":"none"}',
            b'{"alg":256}',
            b'{"alg":"HS256","kid":7}',
            b'{"alg":"HS256","enc":"A128GCM"}',
            b'{"alg":"HS256","zip":"DEF"}',
            b'{"alg":"HS256","crit":[]}',
            b'{"alg":"HS256","crit":"x"}',
            b'{"alg":"HS256","x-score":NaN}',
        ],
    )
    def test_bad_header(self, header, hmac_signer):
        """Malformed or inconsistent headers halt at header decoding."""
        token = f"{b64encode(header)}.e30.AAAA"
        result = decode(token, hmac_signer)
        assert [type(e) for e in result.errors] == [StructuralError]

    def test_payload_not_an_object(self, hmac_key):
        """A verified payload must still be a JSON object."""
        token = _hand_signed({"alg": "HS256"}, b"[1,2]", hmac_key)
        result = decode(token, TokenSigner("HS256", hmac_key))
        assert [type(e) for e in result.errors] == [StructuralError]

    @pytest.mark.parametrize("payload", [b'{"exp":NaN}', b'{"score":-Infinity}'])
    def test_non_finite_payload_number(self, hmac_key, payload):
        """NaN and Infinity are not JSON, even under a valid signature."""
        token = _hand_signed({"alg": "HS256"}, payload, hmac_key)
        result = decode(token, TokenSigner("HS256", hmac_key))

        assert [type(e) for e in result.errors] == [StructuralError]
        assert result.claims is None

    def test_signature_checked_before_payload_parsing(self, hmac_key):
        """Garbage payloads under a bad signature report the signature."""
        header = b64encode(canonical_json({"alg": "HS256"}))
        token = f"{header}.{b64encode(b'not json')}.{b64encode(bytes(32))}"
        result = decode(token, TokenSigner("HS256", hmac_key))
        assert [type(e) for e in result.errors] == [SignatureError]


class TestCriticalHeaders:
    """RFC 7515 'crit' handling."""

    @pytest.fixture
    def critical_token(self, hmac_signer):
        return build(hmac_signer, {"jti": "10"}, headers={"crit": ["x-ext"], "x-ext": 1}).unwrap()

    def test_unknown_extension_rejected(self, critical_token, hmac_signer):
        """An extension the decoder does not implement halts decoding."""
        result = decode(critical_token, hmac_signer)
        assert [type(e) for e in result.errors] == [StructuralError]
        assert result.errors[0].details == {"extension": "x-ext"}

    def test_understood_extension_accepted(self, critical_token, hmac_signer):
        """Extensions the caller declares are accepted."""
        result = decode(critical_token, hmac_signer, critical_extensions=["x-ext"])
        assert result.valid
        assert result.header.crit == ("x-ext",)
        assert result.header.get("x-ext") == 1

    def test_registered_name_rejected(self, hmac_key):
        """'crit' may not list registered parameters."""
        token = _hand_signed({"alg": "HS256", "crit": ["alg"]}, b"{}", hmac_key)
        result = decode(token, TokenSigner("HS256", hmac_key), critical_extensions=["alg"])
        assert result.has_error(StructuralError)


class TestRemoteKeyReferences:
    """'jku' is recorded but never fetched."""

    def test_jku_not_dereferenced(self, hmac_signer, monkeypatch):
        """Decoding a token with jku opens no connection."""

        def no_network(*args, **kwargs):
            raise AssertionError("network access attempted")

        monkeypatch.setattr(socket, "create_connection", no_network)
        monkeypatch.setattr(socket.socket, "connect", no_network)

        token = build(hmac_signer, {"jti": "10"}, headers={"jku": "https://attacker.example/jwks"}).unwrap()
        result = decode(token, hmac_signer)

        assert result.valid
        assert result.header.jku == "https://attacker.example/jwks"


# =============================================================================
# Key resolution
# =============================================================================


class TestKeyResolution:
    """Stage 4: kid -> key."""

    def test_key_set_by_kid(self, key_set, rsa_key, sample_claims, clock):
        """The header kid picks the key from a KeySet."""
        token = build(TokenSigner("RS256", rsa_key), _fixed_claims(sample_claims), clock=clock).unwrap()
        result = decode(token, TokenSigner("RS256"), keys=key_set, clock=clock)
        assert result.valid

    def test_unknown_kid(self, key_set):
        """A kid missing from the set is a KeyResolutionError."""
        token = build(TokenSigner("HS256", Key.from_secret(b"secret", kid="gone")), {}).unwrap()
        result = decode(token, TokenSigner("HS256"), keys=key_set)
        assert [type(e) for e in result.errors] == [KeyResolutionError]

    def test_no_kid_many_keys(self, key_set):
        """Without a kid, a multi-key set cannot choose."""
        token = build(TokenSigner("HS256", Key.from_secret(b"secret")), {}).unwrap()
        result = decode(token, TokenSigner("HS256"), keys=key_set)
        assert [type(e) for e in result.errors] == [KeyResolutionError]

    def test_shared_kid_resolved_by_algorithm(self, ec_keys):
        """Keys sharing a kid are told apart by the expected algorithm."""
        secret = Key.from_secret(b"secret", kid="shared")
        ec = Key.from_pyca(ec_keys["P-256"].material, kid="shared")
        keys = KeySet([secret, ec])

        hs = build(TokenSigner("HS256", secret), {}).unwrap()
        es = build(TokenSigner("ES256", ec), {}).unwrap()

        assert decode(hs, TokenSigner("HS256"), keys=keys).valid
        assert decode(es, TokenSigner("ES256"), keys=keys).valid

    def test_bound_key_without_kid(self, hmac_signer):
        """A bound key with no kid verifies tokens carrying any kid."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        assert decode(token, TokenSigner("HS256", Key.from_secret(b"secret"))).valid

    def test_bound_key_kid_mismatch(self, hmac_signer):
        """A bound key with a different kid does not answer."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        result = decode(token, TokenSigner("HS256", Key.from_secret(b"secret", kid="other")))
        assert [type(e) for e in result.errors] == [KeyResolutionError]

    def test_no_key_at_all(self, hmac_signer):
        """Expecting HS256 with no key and no key set fails resolution."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        assert decode(token, TokenSigner("HS256")).has_error(KeyResolutionError)

    def test_wrong_curve_key(self, ec_keys):
        """A resolved key that does not fit the algorithm is a KeyMismatchError."""
        token = build(TokenSigner("ES256", ec_keys["P-256"]), {}).unwrap()
        wrong_curve = Key.from_pyca(ec_keys["P-384"].public_key().material)
        result = decode(token, TokenSigner("ES256", wrong_curve))
        assert [type(e) for e in result.errors] == [KeyMismatchError]


# =============================================================================
# Registry substitution
# =============================================================================


class _DigestDouble(Signer, Verifier):
    """Keyed SHA-256 stand-in for a real MAC."""

    def sign(self, message, key):
        return hashlib.sha256(key.material + message).digest()

    def verify(self, message, signature, key):
        return self.sign(message, key) == signature


class TestRegistrySubstitution:
    """Algorithms are table entries; a test double needs no decoder changes."""

    def test_double_round_trip(self, hmac_key):
        """A registered double signs and verifies through the full pipeline."""
        double = Algorithm(
            name="X-DIGEST", family=AlgorithmFamily.MAC, capability=_DigestDouble(), key_type="oct"
        )
        registry = DEFAULT_REGISTRY.with_algorithm(double)
        policy = SecurityPolicy.default(registry)
        signer = TokenSigner("X-DIGEST", hmac_key)

        token = build(signer, {"jti": "10"}, policy=policy, registry=registry).unwrap()
        result = decode(token, signer, policy=policy, registry=registry)

        assert result.valid
        assert result.header.alg == "X-DIGEST"

    def test_default_registry_does_not_know_double(self, hmac_key):
        """The default registry is unaffected."""
        token = _hand_signed({"alg": "X-DIGEST"}, b"{}", hmac_key)
        assert decode(token, TokenSigner("X-DIGEST", hmac_key)).has_error(UnsupportedAlgorithmError)


class TestUnverifiedHeader:
    """unverified_header() for routing."""

    def test_reads_header(self, hmac_signer):
        """The header is returned without verification."""
        token = build(hmac_signer, {"jti": "10"}).unwrap()
        header = unverified_header(token)
        assert header.alg == "HS256"
        assert header.kid == "key_id"

    def test_reads_jwe_header(self):
        """JWE headers can be read too."""
        token = build(TokenEncrypter("dir", "A128GCM", Key.from_secret(bytes(16))), {}).unwrap()
        assert unverified_header(token).enc == "A128GCM"

    def test_malformed(self):
        """Malformed tokens raise StructuralError."""
        with pytest.raises(StructuralError):
            unverified_header("a.b")
