"""Tests for the compiled artifact cache."""

import os

import msgspec

from bladekit.artifact import CompiledArtifact
from bladekit.cache import CompiledCache
from bladekit.compiler import BladeCompiler
from bladekit.finder import ViewFinder

from conftest import write


def make_artifact(path="/views/page.blade.html", **kwargs):
    fields = dict(path=path, source_mtime=1, source="hello", fingerprint="abc")
    fields.update(kwargs)
    return CompiledArtifact(**fields)


def test_memory_only_cache():
    cache = CompiledCache()
    artifact = make_artifact()
    cache.put(artifact)

    assert cache.compiled_path(artifact.path) is None
    assert artifact.path in cache
    assert cache.get(artifact.path) is artifact
    assert len(cache) == 1


def test_artifacts_survive_a_new_cache(cache_dir):
    artifact = make_artifact(
        dependencies=["/views/partial.blade.html"],
        expressions={3: "user.name"},
        lines={3: 2},
    )
    CompiledCache(cache_dir).put(artifact)

    loaded = CompiledCache(cache_dir).get(artifact.path)

    assert loaded == artifact
    assert loaded.expression_at(3) == "user.name"
    assert loaded.source_line_at(3) == 2


def test_stored_artifacts_use_hashed_names(cache_dir):
    cache = CompiledCache(cache_dir)
    cache.put(make_artifact())

    stored = list(cache_dir.iterdir())
    assert len(stored) == 1
    assert stored[0].suffix == ".json"
    assert len(stored[0].stem) == 40


def test_corrupt_artifact_is_a_miss(cache_dir):
    cache = CompiledCache(cache_dir)
    artifact = make_artifact()
    cache.compiled_path(artifact.path).write_bytes(b"{not json")

    assert cache.get(artifact.path) is None


def test_artifact_for_another_path_is_a_miss(cache_dir):
    cache = CompiledCache(cache_dir)
    other = make_artifact(path="/elsewhere.blade.html")
    cache.compiled_path("/views/page.blade.html").write_bytes(msgspec.json.encode(other))

    assert cache.get("/views/page.blade.html") is None


def test_fingerprint_mismatch_discards_stored_artifact(cache_dir):
    artifact = make_artifact(fingerprint="old")
    CompiledCache(cache_dir).put(artifact)

    fresh = CompiledCache(cache_dir)
    assert fresh.get(artifact.path, fingerprint="new") is None
    assert fresh.get(artifact.path, fingerprint="old") == artifact


def test_forget_and_clear(cache_dir):
    cache = CompiledCache(cache_dir)
    first = make_artifact(path="/a.blade.html")
    second = make_artifact(path="/b.blade.html")
    cache.put(first)
    cache.put(second)

    cache.forget(first.path)
    assert first.path not in cache
    assert not cache.compiled_path(first.path).exists()

    assert cache.clear() == 1
    assert len(cache) == 0
    assert list(cache_dir.iterdir()) == []


def test_unchanged_source_is_not_recompiled(views, cache_dir):
    path = write(views, "page.blade.html", "{{ x }}")
    compiler = BladeCompiler(ViewFinder(views), CompiledCache(cache_dir))

    first = compiler.get(path)
    assert compiler.get(path) is first
    assert not compiler.is_expired(path)

    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

    assert compiler.is_expired(path)
    assert compiler.get(path) is not first


def test_custom_directive_invalidates_stored_artifacts(views, cache_dir):
    path = write(views, "page.blade.html", "@shout")
    BladeCompiler(ViewFinder(views), CompiledCache(cache_dir)).get(path)

    compiler = BladeCompiler(ViewFinder(views), CompiledCache(cache_dir))
    compiler.directive("shout", lambda expression: "!")

    assert compiler.get(path).source == "!"
