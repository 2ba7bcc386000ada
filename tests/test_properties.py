import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from secrets_sync import archive, crypto
from secrets_sync.constants import MIN_KDF_ITERATIONS
from secrets_sync.registry import Registry

# Group names as a user would type them (no tabs, newlines or leading '#')
group_names = st.from_regex(r"[A-Za-z0-9_.-][A-Za-z0-9_./ -]{0,11}", fullmatch=True) | st.just(
    ""
)
file_names = st.from_regex(r"[a-z0-9_]{1,8}", fullmatch=True)


@given(
    assignments=st.lists(
        st.tuples(st.integers(min_value=0, max_value=4), group_names), max_size=20
    )
)
def test_registry_last_assignment_wins_and_persists(
    assignments: list[tuple[int, str]],
) -> None:
    """
    Property: however paths are shuffled between groups, each path ends up in
    exactly the group it was last added to, and a reload sees the same state.
    """
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        files = [root / f"f{i}" for i in range(5)]
        for f in files:
            f.write_text("x")

        registry = Registry(root / "registry")
        expected: dict[Path, str] = {}
        for index, group in assignments:
            registry.add(files[index], group)
            registry.add(files[index], group)
            expected[files[index]] = group

        reloaded = Registry(root / "registry")
        for path, group in expected.items():
            assert registry.group_of(path) == group
            assert reloaded.group_of(path) == group
        assert reloaded.list_groups() == set(expected.values())


@settings(max_examples=10, deadline=None)
@given(plaintext=st.binary(max_size=4096), passphrase=st.text(min_size=1, max_size=32))
def test_crypto_round_trip(plaintext: bytes, passphrase: str) -> None:
    blob = crypto.encrypt(plaintext, passphrase, MIN_KDF_ITERATIONS)

    assert len(blob.ciphertext) % 16 == 0
    assert crypto.decrypt(blob, passphrase, MIN_KDF_ITERATIONS) == plaintext


@settings(deadline=None)
@given(contents=st.dictionaries(file_names, st.binary(max_size=512), min_size=1, max_size=6))
def test_archive_round_trip(contents: dict[str, bytes]) -> None:
    """
    Property: unpacking a packed tree on a fresh root reproduces every file
    byte for byte and reports the tracked roots it restored.
    """
    with tempfile.TemporaryDirectory() as tmp:
        src = Path(tmp) / "src"
        dst = Path(tmp) / "dst"
        tracked = src / "tree"
        tracked.mkdir(parents=True)
        dst.mkdir()
        for name, data in contents.items():
            (tracked / name).write_bytes(data)

        data = archive.pack([tracked], src)
        restored = archive.unpack(data, dst)

        assert restored == [dst / "tree"]
        for name, payload in contents.items():
            assert (dst / "tree" / name).read_bytes() == payload
