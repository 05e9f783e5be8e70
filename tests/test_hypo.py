from hypothesis import given, strategies as st

from matrix_ci import clean
from matrix_ci.branch import BranchInfo
from matrix_ci.images import git_hash_object
from matrix_ci.remotes.github import truncate

components = st.lists(
    st.text(alphabet=clean.allowed_alphabet, min_size=1, max_size=10), max_size=10
)


@given(st.text())
def test_clean_names_only_use_allowed_alphabet(name):
    cleaned = clean.name(name)
    assert len(cleaned) == len(name)
    assert set(cleaned) <= set(clean.allowed_alphabet)


@given(st.text())
def test_truncated_descriptions_fit(description):
    assert len(truncate(description)) <= 140
    if len(description) <= 140:
        assert truncate(description) == description


@given(st.lists(st.tuples(st.sampled_from(["u16", "u18", "u20"]), components)))
def test_first_platform_listing_a_component_gets_it(listings):
    info = BranchInfo()
    for platform, available in listings:
        info.assign(platform, available)
    for component, platform in info.all_all_sh_components.items():
        first = next(p for p, available in listings if component in available)
        assert platform == first


@given(st.text())
def test_image_hash_is_deterministic(content):
    digest = git_hash_object(content)
    assert digest == git_hash_object(content)
    assert len(digest) == 40
    assert set(digest) <= set("0123456789abcdef")
