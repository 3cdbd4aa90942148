#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Build a static set of "bounce" pages from routes.json (GitHub Pages friendly).
- For every route, fetches the target page once and scrapes og:title, og:description, og:image.
- Writes <out>/<route>/index.html carrying those preview tags, then redirects the browser
  to the target with window.location.replace (plus a <noscript> link).
- Missing preview values fall back to the site defaults / the global OG image.
- Writes CNAME when configured, and a catch-all 404.html when defaultRedirect is set.

routes.json:
  {
    "cname": "shop.unigoods.im",
    "globalOG": "https://shop.unigoods.im/og.png",
    "defaultRedirect": "https://smartstore.naver.com/unigoods",
    "routes": {"/sticker": "https://smartstore.naver.com/unigoods/products/123"}
  }

A failed fetch never stops the run: the page is still written with fallbacks.
"""

import argparse, json, os, sys, tempfile, time, urllib.parse
from dataclasses import dataclass, replace
from html import escape
from pathlib import Path
from typing import Dict, Optional, Tuple

import requests
import urllib3
from bs4 import BeautifulSoup

SITE_ORIGIN = "https://shop.unigoods.im"
DEFAULT_TITLE = "UniGoods"
DEFAULT_DESCRIPTION = "UniGoods link"
NOT_FOUND_DESCRIPTION = "유니굿즈 숍으로 이동합니다."
NOT_FOUND_ROUTE = "/404"

DEFAULT_TIMEOUT = 12.0
MAX_BODY_BYTES = 2 << 20
READ_CHUNK = 64 * 1024

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "text/html",
    "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
}

# meta key -> PreviewMetadata field
OG_FIELDS = {
    "og:title": "title",
    "og:description": "description",
    "og:image": "image",
}

PAGE_TEMPLATE = """<!doctype html>
<html lang="ko">
<head>
<meta charset="utf-8">
<title>{title}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta name="description" content="{description}">
<meta name="robots" content="noindex">
<meta property="og:type" content="website">
<meta property="og:title" content="{title}">
<meta property="og:description" content="{description}">
<meta property="og:image" content="{image}">
<meta property="og:url" content="{canonical}">
<meta name="twitter:card" content="summary_large_image">
<link rel="canonical" href="{canonical}">
<script>(function(){{ window.location.replace("{script_target}"); }})();</script>
<style>html,body{{background:#fff;margin:0;height:100%;display:flex;align-items:center;justify-content:center;font:16px/1.4 -apple-system,BlinkMacSystemFont,Segoe UI,Roboto,Helvetica,Arial,Apple SD Gothic Neo,Noto Sans KR,sans-serif;color:#111}}</style>
</head>
<body>
<noscript>자바스크립트가 꺼져 있어요. <a href="{href_target}">여기를 눌러 이동</a>하세요.</noscript>
</body>
</html>"""

class ConfigError(Exception):
    """routes.json is missing, unreadable or malformed."""

@dataclass(frozen=True)
class PreviewMetadata:
    title: str = ""
    description: str = ""
    image: str = ""

@dataclass(frozen=True)
class ResolvedPage:
    route_path: str
    target_url: str
    title: str
    description: str
    image_url: str
    canonical_url: str

@dataclass(frozen=True)
class RouteConfig:
    routes: Dict[str, str]
    global_image: str = ""
    default_redirect: str = ""
    cname: str = ""

@dataclass(frozen=True)
class Options:
    config_path: Path
    out_dir: Path
    timeout: float = DEFAULT_TIMEOUT
    site_origin: str = SITE_ORIGIN

# ----------------- Utilities -----------------

def clean_route_path(p: str) -> str:
    p = (p or "").strip()
    if not p.startswith("/"): p = "/" + p
    return p.rstrip("/") or "/"

def is_absolute_url(u: str) -> bool:
    try:
        parts = urllib.parse.urlsplit(u)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)

def resolve_url(reference: str, base: str) -> str:
    """Absolutize an image reference against the page it was found on.

    Best-effort: anything that fails to parse is handed back untouched.
    """
    if not reference: return reference
    try:
        ref = urllib.parse.urlsplit(reference)
        if ref.scheme and ref.netloc:
            return urllib.parse.urlunsplit(ref)
        base_parts = urllib.parse.urlsplit(base)
        if ref.netloc and not ref.scheme:
            # protocol-relative: //cdn.example.com/x.png
            return urllib.parse.urlunsplit(ref._replace(scheme=base_parts.scheme))
        return urllib.parse.urljoin(base, reference)
    except ValueError:
        return reference

def js_string(value: str) -> str:
    """Body of a double-quoted JS string literal that is also inert inside <script>."""
    out = json.dumps(value, ensure_ascii=False)[1:-1]
    for ch in ("&", "<", ">", "'"):
        out = out.replace(ch, "\\u%04x" % ord(ch))
    return out.replace('\\"', "\\u0022")

def ensure_dir(p: Path): p.parent.mkdir(parents=True, exist_ok=True)

def write_text_atomic(path: Path, text: str):
    ensure_dir(path)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp): os.unlink(tmp)
        raise

def page_path(out_root: Path, route_path: str) -> Path:
    rel = route_path.lstrip("/")
    return out_root.joinpath(rel, "index.html") if rel else out_root.joinpath("index.html")

# ----------------- Config -----------------

def load_config(path: Path) -> RouteConfig:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be an object")

    scalars = {}
    for key in ("cname", "globalOG", "defaultRedirect"):
        val = raw.get(key)
        if val is None: val = ""
        if not isinstance(val, str):
            raise ConfigError(f"{path}: '{key}' must be a string")
        scalars[key] = val.strip()

    routes = raw.get("routes") or {}
    if not isinstance(routes, dict):
        raise ConfigError(f"{path}: 'routes' must be an object of path -> url")
    for k, v in routes.items():
        if not isinstance(v, str) or not v.strip():
            raise ConfigError(f"{path}: route {k!r} needs a target URL")
        if {".", ".."} & set(clean_route_path(k).split("/")):
            raise ConfigError(f"{path}: route {k!r} has a '.' or '..' segment")

    # Used verbatim on every page, so it has to stand on its own.
    global_image = scalars["globalOG"]
    if global_image and not (is_absolute_url(global_image) and
                             urllib.parse.urlsplit(global_image).scheme in ("http", "https")):
        raise ConfigError(f"{path}: 'globalOG' must be an absolute http(s) URL, got {global_image!r}")

    return RouteConfig(
        routes=dict(routes),
        global_image=global_image,
        default_redirect=scalars["defaultRedirect"],
        cname=scalars["cname"],
    )

# ----------------- OG scraping -----------------

def _meta_entry(tag) -> Tuple[str, str]:
    prop = name = content = ""
    for key, val in tag.attrs.items():
        if isinstance(val, list): val = " ".join(val)
        key = key.lower()
        if key == "property": prop = val.strip().lower()
        elif key == "name": name = val.strip().lower()
        elif key == "content": content = val.strip()
    return (prop or name), content

def extract_metadata(body: bytes) -> PreviewMetadata:
    """Pull og:title / og:description / og:image out of an HTML document.

    Tags are visited in document order and the last one for a field wins.
    Never raises: markup lxml cannot make sense of yields empty metadata.
    """
    try:
        soup = BeautifulSoup(body, "lxml")
    except Exception:
        return PreviewMetadata()
    meta = PreviewMetadata()
    for tag in soup.find_all("meta"):
        key, content = _meta_entry(tag)
        field = OG_FIELDS.get(key)
        if field:
            meta = replace(meta, **{field: content})
    return meta

def iter_body(resp: requests.Response):
    # read1 returns whatever has arrived instead of waiting for a full chunk,
    # so a server trickling bytes still gets its deadline checked.
    raw = getattr(resp, "raw", None)
    if raw is None or not hasattr(raw, "read1"):
        yield from resp.iter_content(chunk_size=READ_CHUNK)
        return
    while True:
        chunk = raw.read1(READ_CHUNK, decode_content=True)
        if not chunk: break
        yield chunk

def read_capped(resp: requests.Response, limit: int = MAX_BODY_BYTES,
                deadline: Optional[float] = None) -> bytes:
    buf = bytearray()
    for chunk in iter_body(resp):
        if chunk:
            buf.extend(chunk[:limit - len(buf)])
        if len(buf) >= limit: break
        if deadline is not None and time.monotonic() > deadline:
            raise requests.Timeout(f"body not received within the deadline ({len(buf)} bytes read)")
    return bytes(buf)

def fetch_metadata(session: requests.Session, target: str,
                   timeout: float = DEFAULT_TIMEOUT) -> Tuple[PreviewMetadata, Optional[Exception]]:
    """One GET against the target; any status code is parsed, only transport errors fail.

    ``timeout`` bounds the whole attempt (connect, headers and body), not just each read.
    urllib3 errors raised outside requests' wrapping (bad host labels, raw body reads)
    count as transport errors too.
    """
    deadline = time.monotonic() + timeout
    try:
        with session.get(target, headers=DEFAULT_HEADERS, timeout=timeout,
                         allow_redirects=True, stream=True) as r:
            body = read_capped(r, MAX_BODY_BYTES, deadline=deadline)
    except (requests.RequestException, urllib3.exceptions.HTTPError, ValueError) as e:
        return PreviewMetadata(), e
    return extract_metadata(body), None

def apply_fallbacks(meta: PreviewMetadata, target: str, global_image: str = "") -> PreviewMetadata:
    image = meta.image or global_image
    return PreviewMetadata(
        title=meta.title or DEFAULT_TITLE,
        description=meta.description or DEFAULT_DESCRIPTION,
        image=resolve_url(image, target),
    )

# ----------------- Rendering -----------------

def build_html(route_path: str, target: str, meta: PreviewMetadata,
               site_origin: str = SITE_ORIGIN) -> str:
    page = ResolvedPage(
        route_path=route_path,
        target_url=target,
        title=meta.title,
        description=meta.description,
        image_url=meta.image,
        canonical_url=site_origin.rstrip("/") + route_path,
    )
    return PAGE_TEMPLATE.format(
        title=escape(page.title),
        description=escape(page.description),
        image=escape(page.image_url),
        canonical=escape(page.canonical_url),
        script_target=js_string(page.target_url),
        href_target=escape(page.target_url),
    )

# ----------------- Orchestrator -----------------

def build_route(session: requests.Session, route_path: str, target: str,
                config: RouteConfig, options: Options) -> str:
    print(f"fetching OG: {route_path} -> {target}", file=sys.stderr)
    meta, err = fetch_metadata(session, target, timeout=options.timeout)
    if err is not None:
        print(f"[WARN] OG fetch failed for {target}: {err} (using fallbacks)", file=sys.stderr)
    meta = apply_fallbacks(meta, target, config.global_image)
    return build_html(route_path, target, meta, site_origin=options.site_origin)

def build_site(config: RouteConfig, options: Options,
               session: Optional[requests.Session] = None) -> Dict[str, Path]:
    out_root = options.out_dir
    out_root.mkdir(parents=True, exist_ok=True)
    session = session or requests.Session()

    if config.cname:
        write_text_atomic(out_root.joinpath("CNAME"), config.cname + "\n")

    written: Dict[str, Path] = {}
    for raw_path, target in config.routes.items():
        route_path = clean_route_path(raw_path)
        html_page = build_route(session, route_path, target, config, options)
        dst = page_path(out_root, route_path)
        write_text_atomic(dst, html_page)
        written[route_path] = dst

    if config.default_redirect:
        meta = PreviewMetadata(title=DEFAULT_TITLE, description=NOT_FOUND_DESCRIPTION,
                               image=config.global_image)
        page = build_html(NOT_FOUND_ROUTE, config.default_redirect, meta, site_origin=options.site_origin)
        write_text_atomic(out_root.joinpath("404.html"), page)

    return written

def main(argv=None):
    ap = argparse.ArgumentParser(description="Generate OG-preview redirect pages from routes.json")
    ap.add_argument("--config", default="routes.json", help="Path to routes.json")
    ap.add_argument("--out", default=".", help="Output directory")
    ap.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="HTTP timeout per route (seconds)")
    ap.add_argument("--site-origin", default=SITE_ORIGIN, help="Origin the pages are served from (canonical/og:url)")
    args = ap.parse_args(argv)

    if args.timeout <= 0:
        print("--timeout must be positive.", file=sys.stderr); sys.exit(2)

    options = Options(
        config_path=Path(args.config),
        out_dir=Path(args.out).resolve(),
        timeout=float(args.timeout),
        site_origin=args.site_origin,
    )

    try:
        config = load_config(options.config_path)
        with requests.Session() as session:
            written = build_site(config, options, session)
    except (ConfigError, OSError) as e:
        print(f"[ERROR] {e}", file=sys.stderr); sys.exit(1)

    print(f"Done. Wrote {len(written)} pages to: {options.out_dir}")

if __name__ == "__main__":
    main()
