"""系统提示词加载工具。

从 prompts 目录读取项目助手的 system prompt 模板，
并用项目快照（名称/描述/状态）填充，用于构造 ChatMessage(role="system")。
"""

from functools import lru_cache
from pathlib import Path

from chat_gateway.domain.models import ProjectSnapshot


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt_template(name: str = "project_assistant_system.md") -> str:
    return (PROMPTS_DIR / name).read_text(encoding="utf-8")


def render_system_prompt(project: ProjectSnapshot) -> str:
    """用项目快照渲染系统提示词。"""

    text = load_prompt_template()
    for field, value in (
        ("{name}", project.name),
        ("{description}", project.description),
        ("{status}", project.status),
    ):
        text = text.replace(field, value)
    return text.strip()
