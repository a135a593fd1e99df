"""
调度器后端接口 - 域无关的定时任务抽象

app 层通过实现 ISchedulerBackend 来对接具体调度框架（APScheduler 等）。
支付状态轮询与实时通道重连都通过该接口登记任务。
"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional


class ISchedulerBackend(ABC):
    """调度后端接口"""

    @abstractmethod
    def start(self) -> None:
        """启动调度器（幂等）"""

    @abstractmethod
    def shutdown(self) -> None:
        """关闭调度器（幂等）"""

    @abstractmethod
    def add_job(
        self,
        job_id: str,
        func: Callable,
        trigger: str,
        **trigger_args,
    ) -> None:
        """添加定时任务，同 ID 任务会被替换

        Args:
            job_id: 任务唯一标识
            func: 要执行的函数
            trigger: 触发器类型（'interval', 'date'）
            **trigger_args: 触发器参数（如 seconds、run_date）
        """

    @abstractmethod
    def remove_job(self, job_id: str) -> None:
        """移除任务（不存在时忽略）"""

    @abstractmethod
    def pause_job(self, job_id: str) -> None:
        """暂停任务"""

    @abstractmethod
    def resume_job(self, job_id: str) -> None:
        """恢复任务"""

    @abstractmethod
    def has_job(self, job_id: str) -> bool:
        """任务是否已登记"""

    @abstractmethod
    def get_jobs(self) -> List[Dict]:
        """获取所有任务

        Returns:
            任务列表，每项至少包含 id, name, trigger, next_run_time, status
        """

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Dict]:
        """获取单个任务信息"""

    @abstractmethod
    def trigger_job(self, job_id: str) -> None:
        """立即触发一次任务执行"""
