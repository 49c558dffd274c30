from __future__ import annotations

# hard defaults (changed by developers in code/build)
DEFAULT_RESOURCE_URL: str = "https://github.com/libnoname/noname.git"
DEFAULT_BRANCH: str = "main"

GITHUB_API_URL: str = "https://api.github.com"
GITHUB_CODELOAD_URL: str = "https://codeload.github.com"
USER_AGENT: str = "bundlehost/0.1"
HTTP_TIMEOUT_SEC: float = 30.0
MAX_REDIRECTS: int = 10

STATIC_HOST: str = "127.0.0.1"
STATIC_PORT: int = 8321

# on-disk layout, relative to the resources / downloads roots
SLOT_NAME: str = "bundle"
METADATA_FILE: str = "metadata.json"
ARCHIVE_FILE: str = "resource.zip"
SCRATCH_DIR: str = "extracted"
ENTRY_SCRIPT: str = "game/server.py"

# capability the entry script builds its network service through
INTERCEPT_MODULE: str = "socketserver"
INTERCEPT_EXPORT: str = "ThreadingTCPServer"

# modules bundle scripts may import; "pkg.*" grants a package and its submodules
GRANTED_MODULES: frozenset[str] = frozenset(
    {
        "socket",
        "socketserver",
        "selectors",
        "select",
        "ssl",
        "threading",
        "queue",
        "time",
        "datetime",
        "json",
        "os",
        "os.path",
        "posixpath",
        "ntpath",
        "genericpath",
        "stat",
        "errno",
        "io",
        "struct",
        "math",
        "random",
        "re",
        "string",
        "collections.*",
        "itertools",
        "functools",
        "hashlib",
        "hmac",
        "base64",
        "binascii",
        "uuid",
        "zlib",
        "gzip",
        "http.*",
        "urllib.*",
        "html.*",
        "mimetypes",
        "logging",
        "enum",
        "dataclasses",
        "typing",
        "copy",
        "heapq",
        "bisect",
        "textwrap",
        "secrets",
        "contextlib",
        "weakref",
    }
)
