"""任务模块加载入口。"""

from __future__ import annotations


def load_builtin_tasks() -> None:
    """加载内置 topic 消费者定义（幂等）。"""

    from topicjobs.tasks import topic_builtin

    # 测试可能清空注册中心，这里每次都调用注册函数回填。
    topic_builtin.register_tasks()
