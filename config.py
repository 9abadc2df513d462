import fnmatch
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from diagnostics import ValidationError


@dataclass(frozen=True)
class IgnoreRules:
    """Excludes declarations by the file they are located in (path or glob)."""
    files: Tuple[str, ...] = ()

    def is_ignored(self, file_path: Optional[str], base_dir: Optional[str] = None) -> bool:
        if not file_path or not self.files:
            return False
        absolute = os.path.abspath(file_path)
        candidates = {file_path, absolute, os.path.basename(file_path)}
        if base_dir:
            candidates.add(os.path.relpath(absolute, base_dir))
        candidates = {c.replace("\\", "/") for c in candidates}
        for pattern in self.files:
            pattern = pattern.replace("\\", "/")
            if any(c == pattern or fnmatch.fnmatchcase(c, pattern) for c in candidates):
                return True
        return False


@dataclass(frozen=True)
class TypeAlias:
    source: str
    target: str


@dataclass(frozen=True)
class MappingConfiguration:
    class_name: str
    aliases: Tuple[TypeAlias, ...] = ()
    ignored_type_names: frozenset = field(default_factory=frozenset)
    bitness: Optional[int] = None

    def __post_init__(self):
        if not self.class_name or not self.class_name.isidentifier():
            raise ValidationError(f"Invalid class name: `{self.class_name}`.")
        if self.bitness not in (None, 32, 64):
            raise ValidationError(f"Bitness must be 32 or 64, got {self.bitness}.")

    def alias_for(self, type_name: str) -> Optional[str]:
        # First matching entry wins so the ordered set behaves deterministically
        for alias in self.aliases:
            if alias.source == type_name:
                return alias.target
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **overrides) -> "MappingConfiguration":
        try:
            aliases = tuple(TypeAlias(str(a["from"]), str(a["to"])) for a in data.get("aliases", []))
            ignored = frozenset(str(n) for n in data.get("ignoredTypeNames", []))
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Malformed mapping configuration: {e}") from e
        values = {
            "class_name": data.get("className", ""),
            "aliases": aliases,
            "ignored_type_names": ignored,
            "bitness": data.get("bitness"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def load(cls, path: str, **overrides) -> "MappingConfiguration":
        if not os.path.isfile(path):
            raise ValidationError(f"File does not exist: `{path}`.")
        with open(path, encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Malformed configuration file `{path}`: {e}") from e
        return cls.from_dict(data, **overrides)

    def with_extra(self, aliases: Iterable[TypeAlias] = (), ignored_type_names: Iterable[str] = ()):
        return MappingConfiguration(
            class_name=self.class_name,
            aliases=self.aliases + tuple(aliases),
            ignored_type_names=self.ignored_type_names | frozenset(ignored_type_names),
            bitness=self.bitness,
        )


@dataclass(frozen=True)
class CodeGeneratorOptions:
    library_name: str
    namespace: Optional[str] = None
    header_name: Optional[str] = None
