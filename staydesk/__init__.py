"""
staydesk - 酒店预订客户端

访客侧的预订、在线支付与实时通知。
"""
__version__ = "0.1.0"
