"""Tests for the view factory: data binding, composers and creators."""

import pytest
from markupsafe import Markup

from bladekit.engine import CompilerEngine, FileEngine
from bladekit.exceptions import UnbalancedDirectiveError, ViewNotFoundError
from bladekit.factory import normalize_name

from conftest import write


@pytest.fixture
def factory(blade):
    return blade.factory


def test_context_precedence(factory, views):
    write(views, "v.blade.html", "{{ a }}{{ b }}{{ c }}")
    factory.share({"a": "shared", "b": "shared", "c": "shared"})

    view = factory.make("v", {"c": "data"}, merge_data={"b": "merge", "c": "merge"})

    assert view.data == {"a": "shared", "b": "merge", "c": "data"}
    assert view.render() == "sharedmergedata"


def test_share_returns_value_and_is_readable(factory):
    assert factory.share("x", 1) == 1
    assert factory.shared("x") == 1
    assert factory.shared("y", "default") == "default"
    assert factory.get_shared() == {"x": 1}


def test_shared_data_is_snapshotted_at_make(factory, views):
    write(views, "v.blade.html", "{{ x }}")
    factory.share("x", 1)
    view = factory.make("v")
    factory.share("x", 2)
    assert view.render() == "1"


def test_make_compiles_without_rendering(factory, views):
    path = write(views, "page.blade.html", "{{ x }}")
    calls = []
    factory.composer("page", calls.append)

    view = factory.make("page")

    assert view.path == path.resolve()
    assert factory.engines.resolve("blade").compiler.cache.get(str(view.path)) is not None
    assert calls == []


def test_make_surfaces_compile_errors(factory, views):
    write(views, "broken.blade.html", "@if(x)")
    with pytest.raises(UnbalancedDirectiveError):
        factory.make("broken")


def test_make_missing_view(factory):
    with pytest.raises(ViewNotFoundError):
        factory.make("missing")
    assert not factory.exists("missing")


def test_engine_follows_file_type(factory, views):
    write(views, "page.blade.html", "")
    write(views, "plain.html", "")
    assert isinstance(factory.make("page").engine, CompilerEngine)
    assert isinstance(factory.make("plain").engine, FileEngine)


def test_names_accept_slashes(factory, views):
    write(views, "admin/users.blade.html", "users")
    assert normalize_name(" admin/users ") == "admin.users"
    assert normalize_name("pkg::admin/users") == "pkg::admin.users"
    assert factory.make("admin/users").name == "admin.users"


def test_first_existing_view(factory, views):
    write(views, "fallback.blade.html", "fallback")
    assert factory.first(["custom", "fallback"]).render() == "fallback"
    with pytest.raises(ViewNotFoundError):
        factory.first(["a", "b"])


def test_file_view(factory, tmp_path):
    path = write(tmp_path / "elsewhere", "one.blade.html", "{{ n }}")
    assert factory.file(path, {"n": 5}).render() == "5"
    with pytest.raises(ViewNotFoundError):
        factory.file(tmp_path / "nope.blade.html")


def test_with_adds_data(factory, views):
    write(views, "v.blade.html", "{{ a }}-{{ b }}")
    view = factory.make("v").with_("a", 1).with_({"b": 2})
    assert "a" in view and view["b"] == 2
    assert str(view) == "1-2"


def test_nested_views_render_as_markup(factory, views):
    write(views, "inner.blade.html", "<b>{{ name }}</b>")
    write(views, "outer.blade.html", "<div>{{ body }}</div>")

    inner = factory.make("inner", {"name": "<i>"})
    outer = factory.make("outer", {"body": inner})

    assert outer.render() == "<div><b>&lt;i&gt;</b></div>"
    assert isinstance(outer.gather_data()["body"], Markup)


def test_composers_run_on_every_render_in_order(factory, views):
    write(views, "profile.blade.html", "{{ order }}")
    calls = []

    def first(view):
        calls.append("first")
        view.with_("order", "first")

    def second(view):
        calls.append("second")
        view.with_("order", view["order"] + ",second")

    factory.composer("profile", first)
    factory.composer(["profile", "other"], second)

    view = factory.make("profile")
    assert view.render() == "first,second"
    view.render()
    assert calls == ["first", "second", "first", "second"]


def test_creators_run_once_per_view_after_composers(factory, views):
    write(views, "profile.blade.html", "{{ who }}")
    calls = []

    factory.composer("profile", lambda view: calls.append("composer") or view.with_("who", "composer"))
    factory.creator("profile", lambda view: calls.append("creator") or view.with_("who", "creator"))

    view = factory.make("profile")
    assert view.render() == "creator"
    view.render()
    factory.make("profile").render()

    assert calls == ["composer", "creator", "composer", "composer", "creator"]


def test_composer_wildcards(factory, views):
    write(views, "admin/users.blade.html", "{{ section }}")
    write(views, "home.blade.html", "{{ section|default('none') }}")

    registered = factory.composer("admin.*", lambda view: view.with_("section", "admin"))

    assert registered[0][0] == "admin.*"
    assert factory.make("admin.users").render() == "admin"
    assert factory.make("home").render() == "none"


def test_namespace_delegation(factory, tmp_path, views):
    write(tmp_path / "a", "dash.blade.html", "a")
    write(tmp_path / "b", "dash.blade.html", "b")

    factory.add_namespace("admin", [tmp_path / "a", tmp_path / "b"])
    assert factory.make("admin::dash").path == (tmp_path / "a" / "dash.blade.html").resolve()
    assert factory.make("admin::dash").render() == "a"
