"""
订单镜像仓储接口 - CRM 侧保存的商城订单副本
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import CommerceOrder


class OrderMirrorRepository(ABC):
    """订单镜像仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def get_by_commerce_id(self, order_id: str) -> Optional[CommerceOrder]:
        """根据商城订单ID获取镜像订单"""
        pass

    @abstractmethod
    async def upsert(self, order: CommerceOrder) -> CommerceOrder:
        """插入或更新镜像订单（财务状态不回退）"""
        pass
