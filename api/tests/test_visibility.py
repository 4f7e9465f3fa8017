from sparkmatch import repo
from sparkmatch.services.visibility import (
    PrivacyFlags,
    fetch_blocked_ids,
    flags_from_row,
    is_visible,
    is_visible_between,
    normalize_certification,
)

V = "00000000-0000-0000-0000-00000000000a"
C = "00000000-0000-0000-0000-00000000000c"


def test_default_flags_are_visible():
    assert is_visible(V, "none", C, PrivacyFlags(), set()) is True


def test_block_hides_before_any_other_rule():
    flags = PrivacyFlags(is_public=True)
    assert is_visible(V, "approved", C, flags, {C}) is False


def test_shadow_restricted_hidden_from_others_but_not_self():
    flags = PrivacyFlags(shadow_restricted=True)
    assert is_visible(V, "approved", C, flags, set()) is False
    assert is_visible(C, "approved", C, flags, set()) is True


def test_private_profile_hidden():
    assert is_visible(V, "approved", C, PrivacyFlags(is_public=False), set()) is False


def test_certified_viewers_only_scenario():
    flags = PrivacyFlags(certified_viewers_only=True)
    assert is_visible(V, "none", C, flags, set()) is False
    assert is_visible(V, "pending", C, flags, set()) is False
    assert is_visible(V, "approved", C, flags, set()) is True


def test_certification_normalisation():
    assert normalize_certification(" Approved ") == "approved"
    assert normalize_certification(None) == "none"
    assert normalize_certification("verified") == "none"


def test_flags_from_sqlite_integers():
    flags = flags_from_row({"is_public": 0, "certified_viewers_only": 1, "shadow_restricted": 0})
    assert flags == PrivacyFlags(is_public=False, certified_viewers_only=True, shadow_restricted=False)
    assert flags_from_row({}).is_public is True


def test_viewer_certification_change_flips_visibility(db, make_actor):
    viewer = make_actor(certification_status="none")
    candidate = make_actor(certified_viewers_only=True)
    assert is_visible_between(db, viewer, candidate) is False

    make_actor(id=viewer, certification_status="approved")
    assert is_visible_between(db, viewer, candidate) is True


def test_block_suppresses_both_directions(db, make_actor):
    a = make_actor()
    b = make_actor(gender="woman", seeking_gender="man")
    assert is_visible_between(db, a, b) is True

    assert repo.create_user_block(db, a, b) is True
    assert is_visible_between(db, a, b) is False
    assert is_visible_between(db, b, a) is False
    assert fetch_blocked_ids(db, b) == {a}


def test_self_block_rejected_and_duplicate_block_is_noop(db, make_actor):
    a = make_actor()
    b = make_actor()
    assert repo.create_user_block(db, a, a) is False
    assert repo.create_user_block(db, a, b) is True
    assert repo.create_user_block(db, a, b) is False
    assert [r["blocked_user_id"] for r in repo.list_user_blocks(db, a)] == [b]
    assert repo.remove_user_block(db, a, b) == 1
    assert is_visible_between(db, a, b) is True
