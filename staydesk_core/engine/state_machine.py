"""
staydesk_core/engine/state_machine.py

状态机引擎 - 支付会话阶段与实时通道连接状态共用
"""
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass, field
import logging
import threading
import time

logger = logging.getLogger(__name__)


@dataclass
class StateTransition:
    """
    状态转换定义

    Attributes:
        from_state: 源状态
        to_state: 目标状态
        trigger: 触发动作
        condition: 可选的转换条件
        side_effects: 副作用函数列表（转换完成后执行）
    """

    from_state: str
    to_state: str
    trigger: str
    condition: Optional[Callable[[Dict[str, Any]], bool]] = None
    side_effects: List[Callable[[], None]] = field(default_factory=list)

    def is_allowed(self, context: Dict[str, Any]) -> bool:
        """检查转换是否被允许"""
        if self.condition is None:
            return True
        try:
            return self.condition(context)
        except Exception as e:
            logger.error(f"Error checking transition condition: {e}")
            return False

    def execute_side_effects(self) -> None:
        """执行副作用，单个副作用失败不影响其他副作用"""
        for effect in self.side_effects:
            try:
                effect()
            except Exception as e:
                logger.error(f"Error executing side effect: {e}")


@dataclass
class StateMachineConfig:
    """
    状态机配置

    Attributes:
        name: 状态机名称
        states: 所有状态的列表
        transitions: 转换列表
        initial_state: 初始状态
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str


@dataclass
class StateMachineSnapshot:
    """状态机快照 - 记录一次已完成的转换"""

    current_state: str
    previous_state: str
    trigger: str
    timestamp: float


class StateMachine:
    """
    状态机

    特性：
    - 状态转换验证（非法转换只记录警告，返回 False）
    - 按触发动作直接转换（fire）
    - 历史记录（有上限）
    - 线程安全：socket.io 回调线程与调度线程都可能驱动同一个状态机

    Example:
        >>> machine = StateMachine(
        ...     config=StateMachineConfig(
        ...         name="Channel",
        ...         states=["disconnected", "connecting"],
        ...         transitions=[StateTransition("disconnected", "connecting", "connect")],
        ...         initial_state="disconnected",
        ...     )
        ... )
        >>> machine.fire("connect")
        True
    """

    def __init__(self, config: StateMachineConfig, history_size: int = 50):
        self._config = config
        self._current_state = config.initial_state
        self._history: List[StateMachineSnapshot] = []
        self._history_size = history_size
        self._lock = threading.RLock()
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        # (from_state, trigger) -> transition
        for t in config.transitions:
            self._transition_map.setdefault(t.from_state, {})[t.trigger] = t

    @property
    def current_state(self) -> str:
        """获取当前状态"""
        return self._current_state

    @property
    def config(self) -> StateMachineConfig:
        """获取状态机配置"""
        return self._config

    def _find(self, trigger: str) -> Optional[StateTransition]:
        return self._transition_map.get(self._current_state, {}).get(trigger)

    def can_fire(self, trigger: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """检查当前状态下触发动作是否可用"""
        with self._lock:
            transition = self._find(trigger)
            return transition is not None and transition.is_allowed(context or {})

    def can_transition_to(self, target_state: str, trigger: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        检查是否可以转换到目标状态

        Args:
            target_state: 目标状态
            trigger: 触发动作
            context: 可选的上下文数据

        Returns:
            True 如果转换被允许
        """
        if target_state not in self._config.states:
            return False
        with self._lock:
            transition = self._find(trigger)
            if transition is None or transition.to_state != target_state:
                return False
            return transition.is_allowed(context or {})

    def transition_to(self, target_state: str, trigger: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        执行状态转换到指定目标状态

        Returns:
            True 如果转换成功
        """
        with self._lock:
            if not self.can_transition_to(target_state, trigger, context):
                logger.warning(
                    f"[{self._config.name}] Invalid transition: "
                    f"{self._current_state} -> {target_state} (trigger: {trigger})"
                )
                return False
            transition = self._find(trigger)
            self._apply(transition)
        transition.execute_side_effects()
        return True

    def fire(self, trigger: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        按触发动作执行转换，目标状态由转换表决定

        Returns:
            True 如果转换成功
        """
        with self._lock:
            transition = self._find(trigger)
            if transition is None or not transition.is_allowed(context or {}):
                logger.warning(
                    f"[{self._config.name}] Trigger '{trigger}' not allowed in state {self._current_state}"
                )
                return False
            self._apply(transition)
        transition.execute_side_effects()
        return True

    def _apply(self, transition: StateTransition) -> None:
        previous_state = self._current_state
        self._current_state = transition.to_state
        self._history.append(StateMachineSnapshot(
            current_state=transition.to_state,
            previous_state=previous_state,
            trigger=transition.trigger,
            timestamp=time.time(),
        ))
        if len(self._history) > self._history_size:
            self._history.pop(0)
        logger.debug(
            f"[{self._config.name}] {previous_state} -> {transition.to_state} (trigger: {transition.trigger})"
        )

    def get_history(self) -> List[StateMachineSnapshot]:
        """获取转换历史"""
        with self._lock:
            return list(self._history)

    def reset(self, state: Optional[str] = None) -> None:
        """
        重置状态机

        Args:
            state: 要重置到的状态，如果为 None 则使用初始状态
        """
        with self._lock:
            self._current_state = state if state is not None else self._config.initial_state
            self._history.clear()


__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachineSnapshot",
    "StateMachine",
]
