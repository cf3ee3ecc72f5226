from .context import ReferenceKind, RewriteContext
from .markup import MarkupRewriter, rewrite_html

__all__ = ["MarkupRewriter", "ReferenceKind", "RewriteContext", "rewrite_html"]
