"""Decide which repository files are worth scanning for class names."""

from __future__ import annotations


# Markup, template and component extensions where utility classes show up.
# Several entries are subsumed by shorter ones (".solid.js" by ".js"); they are
# listed so the set documents the stacks it is meant to cover.
SCANNED_EXTENSIONS: tuple[str, ...] = (
    # HTML and templates
    ".html", ".htm", ".xhtml",
    # React and React-based frameworks
    ".jsx", ".tsx",
    # Vue, Svelte, Astro
    ".vue", ".svelte", ".astro",
    # Solid
    ".solid", ".solid.js", ".solid.ts",
    # Angular
    ".component.html", ".component.ts", ".ng.html",
    # Lit, Stencil, Qwik, Remix
    ".lit.js", ".lit.ts", ".stencil.tsx", ".qwik.tsx", ".qwik.ts", ".remix.tsx", ".remix.ts",
    # Next.js conventions
    ".page.tsx", ".page.ts", ".layout.tsx", ".layout.ts",
    # PHP
    ".php", ".blade.php", ".twig",
    # Ruby
    ".erb", ".haml", ".slim",
    # Python templates
    ".html.py", ".jinja", ".jinja2", ".j2",
    # Go templates
    ".gohtml", ".gotmpl", ".tmpl",
    # Handlebars, Mustache, Pug, EJS, Nunjucks, Liquid
    ".hbs", ".handlebars", ".mustache", ".pug", ".jade", ".ejs", ".njk", ".nunjucks", ".liquid",
    # Plain scripts
    ".js", ".ts", ".mjs", ".cjs",
    # MDX
    ".mdx",
    # Web components, htmx, Alpine
    ".webcomponent.js", ".webcomponent.ts", ".htmx.html", ".alpine.html",
)

# Substrings that disqualify a path whatever its extension: dependency and
# build folders, VCS and editor metadata, lockfiles, tool configs and
# non-UI source files.
EXCLUDED_MARKERS: tuple[str, ...] = (
    "node_modules/", ".git/", "dist/", "build/", "coverage/",
    ".next/", ".nuxt/", ".output/", "vendor/", "__pycache__/",
    ".pytest_cache/", "target/", "bin/", "obj/", ".vscode/", ".idea/",
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", ".env",
    "config.js", "config.ts", "webpack.config", "vite.config", "rollup.config",
    "babel.config", "jest.config", "tailwind.config", "postcss.config",
    ".d.ts", "types.ts", "constants.ts", "utils.ts", "helpers.ts", "api.ts",
    "service.ts", "store.ts", "reducer.ts", "action.ts", "middleware.ts",
    "router.ts", "routes.ts",
)


def is_eligible_path(path: str) -> bool:
    """Return True if ``path`` should be scanned. Exclusions win over extensions."""
    lowered = path.lower()
    if any(marker in lowered for marker in EXCLUDED_MARKERS):
        return False
    return lowered.endswith(SCANNED_EXTENSIONS)
