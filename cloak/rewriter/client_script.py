"""
Script appended to rewritten documents.

It hides the query string of the proxy address from the address bar and
proxifies anchors that are present at load or that page scripts insert later.
Every step swallows its own errors so the page always renders.
"""

import json

GUARD_ATTRIBUTE = "data-cloak-guard"

_GUARD_TEMPLATE = r"""
(function(){
  var PREFIX = __PROXY_PREFIX__;
  try {
    if (location.search) {
      history.replaceState(null, '', location.pathname + location.hash);
    }
  } catch (e) {}

  function encode(url){
    return btoa(unescape(encodeURIComponent(url)))
      .replace(/\+/g, '-').replace(/\//g, '_').replace(/=+$/, '');
  }

  function proxifyAnchor(a){
    try {
      if (!a || !a.getAttribute) return;
      var href = a.getAttribute('href');
      if (!href || !/^https?:\/\//i.test(href)) return;
      var target = new URL(href);
      if (target.host === location.host) return;
      a.setAttribute('href', PREFIX + '/' + encode(target.href));
      var rel = (a.getAttribute('rel') || '').split(/\s+/).filter(Boolean);
      ['noreferrer', 'noopener'].forEach(function(r){
        if (rel.indexOf(r) < 0) rel.push(r);
      });
      a.setAttribute('rel', rel.join(' '));
    } catch (e) {}
  }

  function proxifyAll(){
    try {
      document.querySelectorAll('a[href]').forEach(proxifyAnchor);
    } catch (e) {}
  }

  try {
    if (document.readyState === 'loading') {
      document.addEventListener('DOMContentLoaded', proxifyAll);
    } else {
      proxifyAll();
    }
  } catch (e) {}

  try {
    new MutationObserver(function(mutations){
      mutations.forEach(function(m){
        m.addedNodes && m.addedNodes.forEach(function(n){
          try {
            if (n.tagName === 'A') proxifyAnchor(n);
            if (n.querySelectorAll) n.querySelectorAll('a[href]').forEach(proxifyAnchor);
          } catch (e) {}
        });
      });
    }).observe(document, {childList: true, subtree: true});
  } catch (e) {}
})();
"""


def guard_script(proxy_prefix: str) -> str:
    """JavaScript source of the guard for a given proxy prefix."""
    return _GUARD_TEMPLATE.replace("__PROXY_PREFIX__", json.dumps(proxy_prefix))
