"""End-to-end rendering through the Blade facade."""

import os
from concurrent.futures import ThreadPoolExecutor

import pytest

from bladekit import Blade
from bladekit.exceptions import (
    CircularTemplateReferenceError,
    TemplateCompileError,
    ViewNotFoundError,
)

from conftest import write


def touch_later(path):
    """Move a file's mtime forward so it reads as modified."""
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 2_000_000_000))


# =============================================================================
# Raw text and echoes
# =============================================================================


def test_template_without_directives_renders_raw(blade, views):
    text = "Hello {world}\r\n{% not a tag %} {# nor a comment #} {{\nbraces { at the end {"
    write(views, "raw.blade.html", text)
    assert blade.render("raw") == text


@pytest.mark.parametrize("raw", [b"a\r\nb", b"x\r", b"\r\n", b"one\rtwo\r\nthree\n"])
def test_carriage_returns_are_preserved(blade, views, raw):
    (views / "crlf.blade.html").write_bytes(raw)
    assert blade.render("crlf") == raw.decode()


def test_carriage_returns_around_echoes(blade, views):
    (views / "mixed.blade.html").write_bytes(b"{{ a }}\r\n{{ b }}\r\n")
    assert blade.render("mixed", {"a": 1, "b": 2}) == "1\r\n2\r\n"


def test_escaped_and_raw_echo(blade, views):
    write(views, "echo.blade.html", "{{ payload }}|{!! payload !!}")
    out = blade.render("echo", {"payload": "<script>alert(1)</script>"})
    assert out == "&lt;script&gt;alert(1)&lt;/script&gt;|<script>alert(1)</script>"


def test_literal_echo_and_verbatim(blade, views):
    write(views, "literal.blade.html", "@{{ name }} @verbatim {{ raw }} @endverbatim")
    assert blade.render("literal", {"name": "x"}) == "{{ name }}  {{ raw }} "


def test_comments_render_nothing(blade, views):
    write(views, "comment.blade.html", "a{{-- {{ secret }} --}}b")
    assert blade.render("comment") == "ab"


# =============================================================================
# Control flow
# =============================================================================


@pytest.mark.parametrize("n, expected", [(3, "many"), (1, "one"), (0, "none")])
def test_if_elseif_else(blade, views, n, expected):
    write(views, "count.blade.html", "@if(n > 1) many @elseif(n == 1) one @else none @endif")
    assert blade.render("count", {"n": n}).strip() == expected


def test_unless_isset_empty(blade, views):
    write(
        views,
        "checks.blade.html",
        "@unless(admin) guest @endunless\n"
        "@isset(user) user @endisset\n"
        "@empty(items) empty @endempty\n",
    )
    assert blade.render("checks", {"admin": False, "items": []}).split() == ["guest", "empty"]
    assert blade.render("checks", {"admin": True, "user": "u", "items": [1]}).split() == ["user"]
    assert blade.render("checks", {"admin": True, "user": None, "items": [1]}).split() == []


def test_foreach_with_keys(blade, views):
    write(views, "prices.blade.html", "@foreach(prices as name => price){{ name }}={{ price }};@endforeach")
    assert blade.render("prices", {"prices": {"a": 1, "b": 2}}) == "a=1;b=2;"


def test_foreach_over_list_with_index(blade, views):
    write(views, "list.blade.html", "@foreach(items as i => item){{ i }}:{{ item }} @endforeach")
    assert blade.render("list", {"items": ["x", "y"]}) == "0:x 1:y "


def test_loop_variable_is_scoped(blade, views):
    write(views, "scope.blade.html", "@foreach(items as item){{ item }}@endforeach|{{ item }}")
    assert blade.render("scope", {"items": [1, 2], "item": "outer"}) == "12|outer"


def test_forelse_empty_branch(blade, views):
    write(views, "forelse.blade.html", "@forelse(items as item)\n{{ item }}\n@empty\nnone\n@endforelse\n")
    assert blade.render("forelse", {"items": [1, 2]}).split() == ["1", "2"]
    assert blade.render("forelse", {"items": []}).split() == ["none"]


def test_break_and_continue(blade, views):
    write(
        views,
        "loop.blade.html",
        "@foreach(items as item)\n@continue(item == 2)\n@break(item == 4)\n{{ item }}\n@endforeach\n",
    )
    assert blade.render("loop", {"items": [1, 2, 3, 4, 5]}).split() == ["1", "3"]


def test_json(blade, views):
    write(views, "data.blade.html", "<script>var data = @json(data);</script>")
    out = blade.render("data", {"data": {"a": 1}})
    assert out == '<script>var data = {"a": 1};</script>'


# =============================================================================
# Composition
# =============================================================================


def test_include_with_data(blade, views):
    write(views, "partials/title.blade.html", "<h1>{{ title }}</h1>")
    write(views, "page.blade.html", "@include('partials.title', title=heading + '!')\n")
    assert blade.render("page", {"heading": "Hi"}) == "<h1>Hi!</h1>\n"


def test_include_sees_parent_context(blade, views):
    write(views, "partials/user.blade.html", "{{ user }}")
    write(views, "page.blade.html", "[@include('partials.user')]")
    assert blade.render("page", {"user": "ada"}) == "[ada]"


def test_include_if_and_include_when(blade, views):
    write(views, "banner.blade.html", "BANNER")
    write(views, "page.blade.html", "@includeIf('missing') @includeWhen(show, 'banner')")
    assert blade.render("page", {"show": True}) == " BANNER"
    assert blade.render("page", {"show": False}) == " "


def test_extends_sections_and_yield(blade, views):
    write(
        views,
        "layouts/app.blade.html",
        "<title>@yield('title', 'Default')</title>\n<main>@yield('content')</main>\n",
    )
    write(
        views,
        "home.blade.html",
        "@extends('layouts.app')\n"
        "@section('title', 'Home')\n"
        "@section('content')\n<p>{{ msg }}</p>\n@endsection\n",
    )
    write(views, "bare.blade.html", "@extends('layouts.app')\n")

    assert blade.render("home", {"msg": "hi"}) == "<title>Home</title>\n<main>\n<p>hi</p>\n</main>\n"
    assert blade.render("bare") == "<title>Default</title>\n<main></main>\n"


def test_parent_and_show(blade, views):
    write(views, "layout.blade.html", "@section('sidebar')\nbase\n@show\n")
    write(views, "child.blade.html", "@extends('layout')\n@section('sidebar')\n@parent\nextra\n@endsection\n")
    assert blade.render("child").split() == ["base", "extra"]


def test_circular_extends(blade, views):
    write(views, "a.blade.html", "@extends('b')")
    write(views, "b.blade.html", "@extends('a')")

    with pytest.raises(CircularTemplateReferenceError) as info:
        blade.render("a")

    a = str((views / "a.blade.html").resolve())
    b = str((views / "b.blade.html").resolve())
    assert info.value.chain == [a, b, a]


def test_circular_include(blade, views):
    write(views, "loop.blade.html", "@include('loop')")
    with pytest.raises(CircularTemplateReferenceError):
        blade.render("loop")


def test_static_files_are_returned_verbatim(blade, views):
    write(views, "robots.txt", "User-agent: * {{ not blade }}")
    assert blade.render("robots") == "User-agent: * {{ not blade }}"
    (views / "crlf.txt").write_bytes(b"a\r\nb\r")
    assert blade.render("crlf") == "a\r\nb\r"


# =============================================================================
# Cache behaviour
# =============================================================================


def test_modified_source_is_recompiled(blade, views):
    path = write(views, "greeting.blade.html", "Hello {{ name }}")
    assert blade.render("greeting", {"name": "a"}) == "Hello a"

    path.write_text("Bye {{ name }}", encoding="utf-8")
    touch_later(path)

    assert blade.render("greeting", {"name": "a"}) == "Bye a"


def test_modified_partial_is_picked_up(blade, views):
    partial = write(views, "partial.blade.html", "v1")
    write(views, "page.blade.html", "[@include('partial')]")
    assert blade.render("page") == "[v1]"

    partial.write_text("v2", encoding="utf-8")
    touch_later(partial)

    assert blade.render("page") == "[v2]"


def test_new_blade_reuses_stored_artifacts(views, cache_dir):
    write(views, "page.blade.html", "{{ 1 + 1 }}")
    assert Blade(views, cache_dir).render("page") == "2"

    again = Blade(views, cache_dir)
    key = str((views / "page.blade.html").resolve())
    assert again.compiler.cache.get(key) is not None
    assert again.render("page") == "2"


def test_concurrent_renders_agree(blade, views):
    write(views, "partial.blade.html", "{{ n * 2 }}")
    write(views, "page.blade.html", "@include('partial')")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda n: blade.render("page", {"n": n}), range(32)))

    assert results == [str(n * 2) for n in range(32)]


def test_compile_all(blade, views):
    write(views, "one.blade.html", "1")
    write(views, "nested/two.blade.txt", "@include('one')")
    write(views, "static.html", "not compiled")

    compiled = blade.compile()

    assert sorted(p.name for p in compiled) == ["one.blade.html", "two.blade.txt"]
    assert len(list(blade.cache_path.glob("*.json"))) == 2


# =============================================================================
# Facade
# =============================================================================


def test_directive_registered_through_facade(blade, views):
    write(views, "shout.blade.html", "@upper(name)")
    blade.directive("upper", lambda expression: "{{ (" + expression + ")|upper }}")
    assert blade.render("shout", {"name": "bob"}) == "BOB"


def test_extend_through_facade(blade, views):
    write(views, "short.blade.html", "[[ name ]]")
    blade.extend(lambda source, compiler: source.replace("[[", "{{").replace("]]", "}}"))
    assert blade.render("short", {"name": "<b>"}) == "&lt;b&gt;"


def test_facade_chaining_and_accessors(blade, tmp_path, views):
    write(tmp_path / "admin", "dash.blade.html", "admin {{ x }}")

    result = blade.add_namespace("admin", tmp_path / "admin").directive("noop", lambda e: "")
    assert result is blade
    assert blade.get_compiler() is blade.compiler
    assert blade.get_factory() is blade.factory
    assert blade.view("admin::dash", {"x": 1}) == "admin 1"


def test_shared_data_is_overridden_by_call_site(blade, views):
    write(views, "v.blade.html", "{{ x }}")
    blade.share("x", 1)
    assert blade.render("v") == "1"
    assert blade.render("v", {"x": 2}) == "2"


def test_compile_all_rejects_output_jinja_cannot_parse(blade, views):
    write(views, "bad.blade.html", "{{ user. }}")

    with pytest.raises(TemplateCompileError, match=r"near \[user\.\]"):
        blade.compile()
    with pytest.raises(TemplateCompileError):
        blade.make("bad")


def test_make_rejects_broken_partial(blade, views):
    write(views, "broken.blade.html", "line\n{{ 1 + }}\n")
    write(views, "page.blade.html", "@include('broken')")

    with pytest.raises(TemplateCompileError) as info:
        blade.make("page")
    assert info.value.path == str((views / "broken.blade.html").resolve())
    assert info.value.line == 2


def test_compile_missing_path(blade, tmp_path):
    with pytest.raises(ViewNotFoundError):
        blade.compile(tmp_path / "does-not-exist")


def test_compile_accepts_a_file_path(blade, views):
    page = write(views, "page.blade.html", "p")
    assert blade.compile(page) == [page]


def test_deleted_partial_resolves_again_elsewhere(tmp_path):
    first, second = tmp_path / "a", tmp_path / "b"
    write(second, "partial.blade.html", "B")
    write(first, "page.blade.html", "[@include('partial')]")

    blade = Blade([first, second], tmp_path / "cache")
    assert blade.render("page") == "[B]"

    write(first, "partial.blade.html", "A")
    (second / "partial.blade.html").unlink()

    assert blade.render("page") == "[A]"


def test_deleted_partial_with_no_replacement(blade, views):
    partial = write(views, "partial.blade.html", "x")
    write(views, "page.blade.html", "@include('partial')")
    assert blade.render("page") == "x"

    partial.unlink()

    with pytest.raises(ViewNotFoundError, match=r"View \[partial\]"):
        blade.render("page")
