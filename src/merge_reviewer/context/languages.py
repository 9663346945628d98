"""Language detection from file names."""

import posixpath

EXTENSION_LANGUAGES = {
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "pyx": "python",
    "pyi": "python",
    "java": "java",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "hpp": "cpp",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "rb": "ruby",
    "swift": "swift",
    "kt": "kotlin",
    "kts": "kotlin",
    "scala": "scala",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "html": "html",
    "htm": "html",
    "css": "css",
    "scss": "scss",
    "sass": "sass",
    "less": "less",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "xml": "xml",
    "toml": "toml",
    "ini": "ini",
    "cfg": "config",
    "conf": "config",
    "md": "markdown",
    "markdown": "markdown",
    "rst": "restructuredtext",
    "txt": "text",
    "sql": "sql",
    "dockerfile": "dockerfile",
    "r": "r",
    "pl": "perl",
    "lua": "lua",
    "ex": "elixir",
    "exs": "elixir",
    "erl": "erlang",
    "hrl": "erlang",
    "clj": "clojure",
    "cljs": "clojure",
    "hs": "haskell",
    "elm": "elm",
    "dart": "dart",
    "f90": "fortran",
    "f95": "fortran",
    "f03": "fortran",
    "asm": "assembly",
    "s": "assembly",
}

SPECIAL_FILENAMES = {
    "dockerfile": "dockerfile",
    "makefile": "makefile",
    "rakefile": "ruby",
    "gemfile": "ruby",
    "podfile": "ruby",
    "jenkinsfile": "groovy",
}


def detect_language(filename: str) -> str:
    """Detect a file's language from its name.

    Args:
        filename: Repository-relative path

    Returns:
        Language name, "text" for unrecognised extension-less files and
        "unknown" for unrecognised extensions
    """
    name = posixpath.basename(filename)
    lowered = name.lower()
    if lowered in SPECIAL_FILENAMES:
        return SPECIAL_FILENAMES[lowered]

    _, ext = posixpath.splitext(lowered)
    if not ext:
        # Dotfiles such as ".env" have no extension per splitext
        return "text"
    return EXTENSION_LANGUAGES.get(ext[1:], "unknown")
