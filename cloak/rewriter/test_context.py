from cloak.codec import encode_url, proxy_path
from cloak.rewriter.context import RewriteContext

TOKEN = encode_url("https://example.com/page")


class TestIsProxied:
    def test_relative_proxy_address(self):
        context = RewriteContext(base_url="https://example.com/")
        assert context.is_proxied(f"/p/{TOKEN}")

    def test_custom_prefix(self):
        context = RewriteContext(base_url="https://example.com/", proxy_prefix="/base/p")
        assert context.is_proxied(f"/base/p/{TOKEN}")
        assert not context.is_proxied(f"/p/{TOKEN}")

    def test_absolute_on_proxy_origin(self):
        context = RewriteContext(base_url="https://example.com/", proxy_origin="https://Proxy.test/")
        assert context.is_proxied(f"https://proxy.test/p/{TOKEN}")

    def test_absolute_on_other_origin(self):
        context = RewriteContext(base_url="https://example.com/", proxy_origin="https://proxy.test")
        assert not context.is_proxied(f"https://example.com/p/{TOKEN}")

    def test_absolute_without_known_origin(self):
        context = RewriteContext(base_url="https://example.com/")
        assert not context.is_proxied(f"https://proxy.test/p/{TOKEN}")

    def test_path_that_is_not_a_token(self):
        context = RewriteContext(base_url="https://example.com/")
        assert not context.is_proxied("/p/photo.jpg")


class TestProxify:
    def test_relative_reference(self):
        context = RewriteContext(base_url="https://example.com/a/b.html")
        assert context.proxify("../c.css") == proxy_path("https://example.com/c.css")

    def test_prefix_used(self):
        context = RewriteContext(base_url="https://example.com/", proxy_prefix="/base/p")
        assert context.proxify("/x") == proxy_path("https://example.com/x", "/base/p")

    def test_proxified_twice_is_stable(self):
        context = RewriteContext(base_url="https://example.com/")
        once = context.proxify("/x")
        assert context.proxify(once) == once

    def test_opaque_and_fragment_untouched(self):
        context = RewriteContext(base_url="https://example.com/")
        for reference in ["javascript:go()", "data:,x", "mailto:a@b.c", "#top", ""]:
            assert context.proxify(reference) == reference

    def test_unresolvable_untouched(self):
        context = RewriteContext(base_url="https://example.com/")
        assert context.proxify("ftp://files.example.com/a") == "ftp://files.example.com/a"
