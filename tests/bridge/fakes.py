"""In-memory stand-ins for provider collaborators used across tests."""

from typing import Dict, List, Optional

from tfbridge.errors import ProviderAPIError


class FakeContentsClient:
    """In-memory contents API built from a flat {path: bytes} mapping."""

    def __init__(self, files: Dict[str, bytes], extra_entries: Optional[Dict[str, list]] = None):
        self.files = files
        self.extra_entries = extra_entries or {}
        self.listed: List[str] = []
        self.fetched: List[str] = []
        self.refs: List[Optional[str]] = []
        self.fail_on: Optional[str] = None

    def _children(self, path: str) -> list:
        prefix = f"{path}/" if path else ""
        seen = []
        entries = []
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            rest = file_path[len(prefix):]
            name, _, remainder = rest.partition("/")
            if name in seen:
                continue
            seen.append(name)
            entries.append(
                {
                    "name": name,
                    "path": f"{prefix}{name}",
                    "type": "dir" if remainder else "file",
                    "download_url": None if remainder else f"https://raw.test/{prefix}{name}",
                }
            )
        return entries + self.extra_entries.get(path, [])

    async def list_contents(self, repo: str, path: str = "", ref: Optional[str] = None) -> list:
        self.listed.append(path)
        self.refs.append(ref)
        if self.fail_on == path:
            raise ProviderAPIError("listing failed", status_code=500)
        return self._children(path)

    async def get_file_content(self, repo: str, path: str, ref: Optional[str] = None) -> bytes:
        self.fetched.append(path)
        if self.fail_on == path:
            raise ProviderAPIError("fetch failed", status_code=404)
        return self.files.get(path, b"")
