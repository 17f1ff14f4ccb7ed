"""
Unit tests for the trust validator.

Every finding is data on the success track; only malformed input fails.

Test categories:
  - Trusted chains of several lengths
  - Untrusted chains (anchor absent from the pool)
  - Per-certificate findings: validity window, signature, linkage, CA bit,
    keyCertSign, weak algorithms
  - Input failures
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from railway import ErrorCode, ResultAssertions

from certchain.domain.models import Chain
from certchain.domain.trust import RootPool
from certchain.validator import (
    EXPIRED,
    ISSUER_MISMATCH,
    KEY_USAGE_FORBIDS_SIGNING,
    MISSING_CA_BIT,
    NOT_YET_VALID,
    SIGNATURE_INVALID,
    WEAK_ALGORITHM,
    TrustValidator,
)
from tests.conftest import Hierarchy, Pki


@pytest.fixture()
def validator() -> TrustValidator:
    return TrustValidator()


class TestTrustedChains:
    """Verify chains that end in a pool anchor with no findings."""

    def test_three_certificate_chain(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        """
        GIVEN leaf → intermediate → root with the root in the pool
        WHEN validated
        THEN the chain is valid and every verdict is clean.
        """
        outcome = ResultAssertions.assert_success(
            validator.validate(hierarchy.chain, RootPool.of([hierarchy.root.cert]))
        )
        assert outcome.valid
        assert outcome.trusted_root_reached
        assert [v.ok for v in outcome.verdicts] == [True, True, True]
        assert all(v.signature_valid for v in outcome.verdicts)

    @pytest.mark.parametrize("intermediates", [0, 2, 4])
    def test_trust_independent_of_length(self, validator: TrustValidator, pki: Pki, intermediates: int) -> None:
        root = pki.root()
        certs = [root]
        for n in range(intermediates):
            certs.append(pki.intermediate(certs[-1], f"Intermediate {n}"))
        certs.append(pki.leaf(certs[-1]))
        chain = Chain(tuple(c.cert for c in reversed(certs)))

        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([root.cert])))

        assert outcome.valid
        assert len(outcome.verdicts) == intermediates + 2

    def test_lone_trusted_root(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        outcome = ResultAssertions.assert_success(
            validator.validate(Chain((hierarchy.root.cert,)), RootPool.of([hierarchy.root.cert]))
        )
        assert outcome.valid
        assert outcome.verdicts[0].signature_valid is True

    def test_checked_at_is_recorded(self, validator: TrustValidator, hierarchy: Hierarchy, pki: Pki) -> None:
        outcome = ResultAssertions.assert_success(
            validator.validate(hierarchy.chain, RootPool.of([hierarchy.root.cert]), at=pki.now)
        )
        assert outcome.checked_at == pki.now


class TestUntrustedChains:
    def test_root_absent_from_pool(self, validator: TrustValidator, pki: Pki, hierarchy: Hierarchy) -> None:
        """
        GIVEN a well-formed chain whose root is not an anchor
        WHEN validated
        THEN verdicts are clean but the chain is not valid.
        """
        outcome = ResultAssertions.assert_success(
            validator.validate(hierarchy.chain, RootPool.of([pki.root("Another Root").cert]))
        )
        assert not outcome.trusted_root_reached
        assert not outcome.valid
        assert all(v.ok for v in outcome.verdicts)

    def test_empty_pool(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        outcome = ResultAssertions.assert_success(validator.validate(hierarchy.chain, RootPool()))
        assert not outcome.valid

    def test_chain_ending_in_intermediate(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        """
        GIVEN a chain that stops at the intermediate, with only the root in the pool
        WHEN validated
        THEN the terminal signature is unknown and trust is not reached.
        """
        chain = Chain((hierarchy.leaf.cert, hierarchy.intermediate.cert))
        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([hierarchy.root.cert])))
        assert outcome.verdicts[1].signature_valid is None
        assert not outcome.trusted_root_reached


class TestFindings:
    """Verify per-certificate findings."""

    def test_expired_intermediate(self, validator: TrustValidator, pki: Pki) -> None:
        """
        GIVEN an intermediate that expired yesterday
        WHEN the chain is validated
        THEN only that verdict carries EXPIRED and the chain is not valid.
        """
        root = pki.root()
        intermediate = pki.intermediate(
            root, not_before=pki.now - timedelta(days=60), not_after=pki.now - timedelta(days=1)
        )
        leaf = pki.leaf(intermediate)
        chain = Chain((leaf.cert, intermediate.cert, root.cert))

        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([root.cert]), pki.now))

        assert outcome.verdicts[1].findings == (EXPIRED,)
        assert outcome.verdicts[1].expired
        assert not outcome.verdicts[1].within_validity
        assert outcome.verdicts[0].ok and outcome.verdicts[2].ok
        assert outcome.trusted_root_reached
        assert not outcome.valid

    def test_not_yet_valid(self, validator: TrustValidator, hierarchy: Hierarchy, pki: Pki) -> None:
        outcome = ResultAssertions.assert_success(
            validator.validate(hierarchy.chain, RootPool.of([hierarchy.root.cert]), pki.now - timedelta(days=2))
        )
        assert all(NOT_YET_VALID in v.findings for v in outcome.verdicts)

    def test_signature_from_wrong_key(self, validator: TrustValidator, pki: Pki, hierarchy: Hierarchy) -> None:
        """
        GIVEN a leaf signed by a key other than its named issuer's
        WHEN validated
        THEN its verdict carries SIGNATURE_INVALID while linkage by name holds.
        """
        forged = pki.leaf(hierarchy.intermediate, signing_key=pki.ec_key())
        chain = Chain((forged.cert, hierarchy.intermediate.cert, hierarchy.root.cert))

        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([hierarchy.root.cert])))

        assert outcome.verdicts[0].signature_valid is False
        assert outcome.verdicts[0].issuer_linked
        assert SIGNATURE_INVALID in outcome.verdicts[0].findings

    def test_issuer_name_mismatch(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        chain = Chain((hierarchy.leaf.cert, hierarchy.root.cert))
        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([hierarchy.root.cert])))
        assert outcome.verdicts[0].findings == (ISSUER_MISMATCH,)
        assert outcome.verdicts[0].signature_valid is None

    def test_missing_ca_bit(self, validator: TrustValidator, pki: Pki) -> None:
        root = pki.root()
        not_a_ca = pki.issue("Not A CA", root, ca=False)
        leaf = pki.leaf(not_a_ca)
        chain = Chain((leaf.cert, not_a_ca.cert, root.cert))

        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([root.cert])))

        assert MISSING_CA_BIT in outcome.verdicts[1].findings
        assert not outcome.verdicts[1].ca_bit_present
        assert MISSING_CA_BIT not in outcome.verdicts[0].findings

    def test_key_usage_forbids_cert_signing(self, validator: TrustValidator, pki: Pki) -> None:
        root = pki.root()
        intermediate = pki.intermediate(root, key_cert_sign=False)
        leaf = pki.leaf(intermediate)
        chain = Chain((leaf.cert, intermediate.cert, root.cert))

        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([root.cert])))

        assert outcome.verdicts[1].findings == (KEY_USAGE_FORBIDS_SIGNING,)
        assert not outcome.verdicts[1].key_usage_permits_signing

    def test_weak_rsa_key(self, validator: TrustValidator, pki: Pki, hierarchy: Hierarchy) -> None:
        """
        GIVEN a leaf with a 1024-bit RSA key
        WHEN validated
        THEN WEAK_ALGORITHM is flagged on the leaf only.
        """
        weak = pki.leaf(hierarchy.intermediate, key=pki.rsa_key(1024))
        chain = Chain((weak.cert, hierarchy.intermediate.cert, hierarchy.root.cert))

        outcome = ResultAssertions.assert_success(validator.validate(chain, RootPool.of([hierarchy.root.cert])))

        assert outcome.verdicts[0].findings == (WEAK_ALGORITHM,)
        assert outcome.verdicts[0].weak_algorithm
        assert not outcome.valid


class TestInputFailures:
    def test_empty_chain(self, validator: TrustValidator) -> None:
        ResultAssertions.assert_failure(validator.validate(Chain(()), RootPool()), ErrorCode.INPUT_ERROR)

    def test_none_chain(self, validator: TrustValidator) -> None:
        ResultAssertions.assert_failure(validator.validate(None, RootPool()), ErrorCode.INPUT_ERROR)  # type: ignore[arg-type]

    def test_non_certificate_element(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        chain = Chain((hierarchy.leaf.cert, None))  # type: ignore[arg-type]
        result = validator.validate(chain, RootPool())
        ResultAssertions.assert_failure(result, ErrorCode.INPUT_ERROR)
        ResultAssertions.assert_failure_message_contains(result, "element 1")

    def test_none_pool(self, validator: TrustValidator, hierarchy: Hierarchy) -> None:
        ResultAssertions.assert_failure(validator.validate(hierarchy.chain, None), ErrorCode.INPUT_ERROR)  # type: ignore[arg-type]
