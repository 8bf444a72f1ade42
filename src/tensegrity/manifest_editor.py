"""Apply Tensegrity admission defaults to YAML manifests on disk."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq

from .resources.tensegrity import TensegritySpec, find_kind

yaml = YAML()
yaml.preserve_quotes = True
yaml.explicit_start = False
yaml.width = 120
yaml.indent(mapping=2, sequence=4, offset=2)

_NAME_FIELDS = (
    "consumesConfigMapName",
    "consumesSecretName",
    "producesConfigMapName",
    "producesSecretName",
)


def load_documents(path: Path) -> List[Any]:
    with path.open() as stream:
        return [document for document in yaml.load_all(stream) if document is not None]


def is_tensegrity_document(document: Any) -> bool:
    if not isinstance(document, dict):
        return False
    return find_kind(str(document.get("apiVersion", "")), str(document.get("kind", ""))) is not None


class ManifestDefaulter:
    """Fill in derived names and the namespace delegate, keeping comments and quoting intact."""

    def __init__(self, root: Path, default_namespace: Optional[str] = None) -> None:
        self.root = root
        self.default_namespace = default_namespace

    def manifests(self) -> List[Path]:
        if self.root.is_file():
            return [self.root]
        if not self.root.is_dir():
            return []
        return sorted(path for path in self.root.rglob("*.y*ml") if path.is_file())

    def apply_defaults(self) -> List[Path]:
        """Default every Tensegrity document below ``root``; return the files that changed."""

        updated_files: List[Path] = []
        for path in self.manifests():
            documents = load_documents(path)
            changed = False
            for document in documents:
                if is_tensegrity_document(document):
                    changed |= self._default_document(document)
            if changed:
                with path.open("w") as stream:
                    yaml.dump_all(documents, stream)
                updated_files.append(path)
        return updated_files

    def _default_document(self, document: CommentedMap) -> bool:
        metadata = document.get("metadata") or {}
        name = str(metadata.get("name", ""))
        if not name:
            return False
        namespace = str(metadata.get("namespace") or self.default_namespace or "")
        spec = document.setdefault("spec", CommentedMap())
        model = TensegritySpec.model_validate(dict(spec))
        if not model.apply_defaults(name, namespace):
            return False

        changed = False
        for entry in spec.get("produces") or []:
            if isinstance(entry, dict) and not entry.get("name"):
                entry["name"] = name
                changed = True
        if not spec.get("delegates") and model.delegates:
            delegates = CommentedSeq()
            for delegate in model.delegates:
                item = CommentedMap()
                item["kind"] = delegate.kind
                item["name"] = delegate.name
                delegates.append(item)
            spec["delegates"] = delegates
            changed = True
        defaulted = model.model_dump(by_alias=True)
        for field in _NAME_FIELDS:
            if not spec.get(field):
                spec[field] = defaulted[field]
                changed = True
        return changed
