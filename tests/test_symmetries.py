"""Tests for the symmetry group algebra."""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from symmetric_ttns.symmetries import (
    GroupKind,
    POINT_GROUP_IRREPS,
    SymmetryGroup,
    group_list_string,
    make_group,
    make_groups,
    target_state_string,
)

labels = st.integers(min_value=-50, max_value=50)
spins = st.integers(min_value=0, max_value=40)
signs = st.sampled_from([1, -1])


class TestMakeGroup:
    def test_by_name_tag_and_enum(self):
        assert make_group("SU2") is make_group(2) is make_group(GroupKind.SU2)

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            make_group("SO3")

    def test_tags_match_snapshot_encoding(self):
        assert [int(g.kind) for g in make_groups(["Z2", "U1", "SU2", "D2h", "SENIORITY"])] \
            == [0, 1, 2, 10, 11]

    def test_every_kind_instantiates(self):
        for kind in GroupKind:
            group = make_group(kind)
            assert isinstance(group, SymmetryGroup)
            assert group.kind == kind
            assert group.trivial_label == 0

    def test_group_list_string(self):
        assert group_list_string(make_groups(["Z2", "U1", "SU2"])) == "Z2 U1 SU2"

    def test_target_state_string(self):
        groups = make_groups(["U1", "SU2", "C2v"])
        assert target_state_string(groups, (4, 1, 3)) == "4 1/2 B2"


class TestZ2:
    def test_fuse_is_xor(self, z2):
        assert z2.fuse(1, 1) == (0, 1, 1)
        assert z2.fuse(0, 1) == (1, 1, 1)
        assert z2.fuse(1, 1, -1) == (0, 1, 1)

    def test_text(self, z2):
        assert z2.string_to_label("1") == (1, True)
        assert z2.string_to_label("2")[1] is False
        assert z2.string_to_label("odd")[1] is False
        assert z2.label_to_string(1) == "1"
        assert z2.label_to_string(3) == "INVALID"

    def test_fermionic_signs(self, z2):
        assert z2.prefactor_matvec((0, 0, 0, 1, 1), 1) == -1.0
        assert z2.prefactor_matvec((0, 0, 0, 1, 1), 0) == 1.0
        assert z2.prefactor_append_physical((0, 1, 1, 0, 1, 1), is_left=False) == -1.0
        assert z2.prefactor_append_physical((0, 1, 1, 0, 1, 1), is_left=True) == 1.0
        assert z2.prefactor_add_p_operator((1, 0, 1, 1, 0, 1), is_left=True) == -1.0
        assert z2.prefactor_add_p_operator((1, 0, 1, 1, 0, 1), is_left=False) == 1.0

    def test_branch_update_sign(self, z2):
        bra, ket, ops = (0, 0, 0), (1, 0, 1), (0, 1, 1)
        # result on leg 2: sign of ket on leg 0 passing operator on leg 1
        assert z2.prefactor_update_branch((bra, ket, ops), 2) == -1.0
        assert z2.prefactor_update_branch((bra, ket, ops), 0) == 1.0
        with pytest.raises(ValueError):
            z2.prefactor_update_branch((bra, ket, ops), 3)


class TestU1:
    @given(labels, labels, signs)
    def test_fuse_law(self, a, b, sign):
        u1 = make_group("U1")
        assert u1.fuse(a, b, sign) == (a + sign * b, 1, 1)

    @given(st.lists(labels, min_size=1, max_size=5), st.lists(labels, min_size=1, max_size=5),
           signs)
    def test_bound_safety(self, set_a, set_b, sign):
        u1 = make_group("U1")
        bound = u1.max_label_bound(set_a, set_b)
        for a in set_a:
            for b in set_b:
                for r in u1.fused_labels(a, b, sign):
                    assert abs(r) < bound

    @given(labels, labels, signs)
    def test_text_round_trip(self, a, b, sign):
        u1 = make_group("U1")
        for label in u1.fused_labels(a, b, sign):
            assert u1.string_to_label(u1.label_to_string(label)) == (label, True)

    def test_prefactors_are_unity(self, u1):
        assert u1.mirror_coupling((1, 2, 3)) == 1.0
        assert u1.prefactor_combine_mpos(((1, 1, 2), (0, 1, 1)), (1, 0, 1)) == 1.0

    @pytest.mark.parametrize("text", ["", "1.5", "four", "--1", "1_0", "\u0663", "+ 1", "0x1"])
    def test_malformed_text(self, u1, text):
        assert u1.string_to_label(text) == (0, False)


class TestSU2:
    def test_fuse_examples(self, su2):
        assert su2.fuse(1, 1) == (0, 2, 2)
        assert list(su2.fused_labels(1, 1)) == [0, 2]
        assert su2.fuse(2, 1) == (1, 2, 2)
        assert list(su2.fused_labels(2, 1)) == [1, 3]

    @given(spins, spins)
    def test_fuse_law(self, a, b):
        su2 = make_group("SU2")
        assert su2.fuse(a, b) == (abs(a - b), min(a, b) + 1, 2)
        for c in su2.fused_labels(a, b):
            assert (a + b + c) % 2 == 0

    @given(st.lists(spins, min_size=1, max_size=5), st.lists(spins, min_size=1, max_size=5))
    def test_bound_safety(self, set_a, set_b):
        su2 = make_group("SU2")
        bound = su2.max_label_bound(set_a, set_b)
        for a in set_a:
            for b in set_b:
                assert max(su2.fused_labels(a, b)) < bound

    @given(spins, spins)
    def test_text_round_trip(self, a, b):
        su2 = make_group("SU2")
        for label in su2.fused_labels(a, b):
            assert su2.string_to_label(su2.label_to_string(label)) == (label, True)

    def test_text(self, su2):
        assert su2.label_to_string(1) == "1/2"
        assert su2.label_to_string(4) == "2"
        assert su2.string_to_label("3/2") == (3, True)
        assert su2.string_to_label("1") == (2, True)
        assert su2.string_to_label("-1/2")[1] is False
        assert su2.string_to_label("1/3")[1] is False
        assert su2.string_to_label("a/2")[1] is False

    @pytest.mark.parametrize("text", ["1_1/2", "1_0", "\u0663/2", "\u0661", "1/2/2", "/2"])
    def test_malformed_text(self, su2, text):
        assert su2.string_to_label(text) == (0, False)

    def test_not_abelian(self, su2):
        assert not su2.is_abelian

    @pytest.mark.parametrize("a,p,c", [(0, 1, 1), (1, 1, 0), (1, 1, 2), (2, 1, 3), (3, 2, 1)])
    def test_append_physical_identity(self, su2, a, p, c):
        # the identity operator only rescales reduced matrix elements
        expected = math.sqrt((c + 1) / (a + 1))
        for is_left in (True, False):
            value = su2.prefactor_append_physical((a, p, c, a, c, 0), is_left)
            assert value == pytest.approx(expected)

    @pytest.mark.parametrize("a,b,J", [(0, 0, 0), (1, 1, 0), (1, 1, 2), (2, 1, 1), (3, 2, 5)])
    def test_matvec_identity(self, su2, a, b, J):
        value = su2.prefactor_matvec((a, b, J, a, b), 0)
        assert value == pytest.approx(math.sqrt((J + 1) / ((a + 1) * (b + 1))))

    def test_forbidden_couplings_vanish(self, su2):
        assert su2.mirror_coupling((1, 1, 1)) == 0.0
        assert su2.prefactor_append_physical((0, 1, 1, 0, 3, 2), True) == 0.0

    def test_combine_trivial_operators(self, su2):
        # combining two identities gives the identity on the coupled bond
        value = su2.prefactor_combine_mpos(((1, 1, 2), (1, 1, 2)), (0, 0, 0))
        assert value == pytest.approx(math.sqrt(3) / 2)

    def test_branch_update_matches_combine(self, su2):
        bra, ket, ops = (1, 1, 2), (1, 1, 2), (0, 2, 2)
        assert su2.prefactor_update_branch((bra, ket, ops), 2) == pytest.approx(
            su2.prefactor_combine_mpos((bra, ket), ops)
        )


class TestSeniority:
    def test_target_range(self, seniority):
        assert seniority.target_labels(4) == [0, 2, 4]
        assert seniority.target_labels(3) == [1, 3]
        assert seniority.target_labels(0) == [0]

    def test_pinned_target(self, seniority):
        assert seniority.target_labels(-2) == [2]

    def test_fuses_additively(self, seniority):
        assert seniority.fuse(2, 1) == (3, 1, 1)

    def test_text(self, seniority):
        assert seniority.string_to_label("-2") == (-2, True)
        assert seniority.string_to_label("2_0") == (0, False)


class TestPointGroups:
    def test_products_are_xor(self, d2h):
        assert d2h.fuse(1, 2) == (3, 1, 1)
        assert d2h.fuse(5, 5) == (0, 1, 1)

    @pytest.mark.parametrize("kind", list(POINT_GROUP_IRREPS))
    def test_text_round_trip(self, kind):
        group = make_group(kind)
        for label, name in enumerate(POINT_GROUP_IRREPS[kind]):
            assert group.label_to_string(label) == name
            assert group.string_to_label(name) == (label, True)

    @pytest.mark.parametrize("kind", list(POINT_GROUP_IRREPS))
    def test_bound_safety(self, kind):
        group = make_group(kind)
        irreps = range(len(POINT_GROUP_IRREPS[kind]))
        bound = group.max_label_bound(irreps, irreps)
        assert all(a ^ b < bound for a in irreps for b in irreps)

    def test_case_sensitive(self, d2h):
        assert d2h.string_to_label("b2u")[1] is False
        assert d2h.string_to_label("B2u") == (6, True)

    def test_invalid_label(self, d2h):
        assert d2h.label_to_string(8) == "INVALID"
