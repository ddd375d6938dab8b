"""
shiftbot - 排班助手的对话式工具编排运行时

模块概述：
    成员通过聊天（LINE / CLI）提出请假、替班等请求，shiftbot 把每条消息交给语言模型，
    模型通过一组排班工具（查询日期、查询排班、查询规则、编辑排班、群组广播）完成操作，
    最后给出一条自然语言回复。

    核心组件：
    - agent：编排循环、工具注册与执行
    - session：按用户持久化的会话历史
    - providers：模型网关（LiteLLM）
    - shifts：排班表存储
    - bus / channels：消息总线与 LINE 渠道
"""

__version__ = "0.1.0"

__logo__ = "🗓️"
