"""单文档型存储：API 凭据、当前模型配置、项目元数据。

均以 JSON 文件保存在 storage_root 下，写入走临时文件 + os.replace。
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from chat_gateway.config.settings import settings
from chat_gateway.domain.exceptions import PersistenceError, ValidationError
from chat_gateway.domain.models import ModelConfig, ProjectSnapshot
from chat_gateway.domain.stores import CredentialStore, ModelRegistry, ProjectMetadataProvider
from chat_gateway.infrastructure.storage.json_store import safe_segment, write_json_atomic
from chat_gateway.providers.registry import DEFAULT_MODEL, find_model, resolve_model


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise PersistenceError(code="STORE_READ_ERROR", message=str(e))
    return data if isinstance(data, dict) else None


class JsonCredentialStore(CredentialStore):
    """保存单个上游 API 凭据（api_keys.json 中的 "openrouter" 项）。

    文件中没有凭据时回退到 fallback（通常来自 settings.openrouter_api_key）。
    """

    PROVIDER_KEY = "openrouter"

    def __init__(self, root: str | Path | None = None, fallback: Optional[str] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "api_keys.json"
        self._fallback = fallback

    def get(self) -> Optional[str]:
        data = _read_json(self._path) or {}
        entry = data.get(self.PROVIDER_KEY) or {}
        key = entry.get("key") if isinstance(entry, dict) else None
        return key or self._fallback or None

    def save(self, api_key: str) -> None:
        api_key = (api_key or "").strip()
        if len(api_key) < 10:
            raise ValidationError(code="INVALID_API_KEY", message="API key seems too short")
        data = _read_json(self._path) or {}
        data[self.PROVIDER_KEY] = {"key": api_key}
        write_json_atomic(self._path, data)


class JsonModelRegistry(ModelRegistry):
    """当前模型配置（model_config.json 的 model_id 字段）。

    未配置或指向未登记模型时返回 DEFAULT_MODEL；文件损坏时抛 PersistenceError，
    由上下文聚合层决定是否降级。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "model_config.json"

    def active_model(self) -> ModelConfig:
        data = _read_json(self._path)
        if not data:
            return DEFAULT_MODEL
        return resolve_model(data.get("model_id"))

    def set_active_model(self, model_id: str) -> ModelConfig:
        model = find_model(model_id)
        if model is None:
            raise ValidationError(code="UNKNOWN_MODEL", message=f"Unknown model: {model_id!r}")
        write_json_atomic(self._path, {"model_id": model.id})
        return model


class JsonProjectStore(ProjectMetadataProvider):
    """项目元数据，每个项目一个 projects/<id>.json。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._projects_root = self._root / "projects"
        self._projects_root.mkdir(parents=True, exist_ok=True)

    def get(self, project_id: str) -> Optional[ProjectSnapshot]:
        data = _read_json(self._projects_root / f"{safe_segment(project_id)}.json")
        if data is None:
            return None
        return ProjectSnapshot(
            name=data.get("name") or "",
            description=data.get("description") or "",
            status=data.get("status") or "",
        )

    def save(self, project_id: str, project: ProjectSnapshot) -> None:
        write_json_atomic(
            self._projects_root / f"{safe_segment(project_id)}.json",
            {
                "id": project_id,
                "name": project.name,
                "description": project.description,
                "status": project.status,
            },
        )
