"""领域层模型与协议。

包含：
- models: 会话记录、请求上下文、缓存键与补全结果，以及 Provider 侧的统一请求/响应模型。
- stores: 网关依赖的外部协作方（凭据、历史、模型、项目、持久缓存）的 Protocol 抽象。
- exceptions: 业务异常类型定义。
"""
