# app/api/__init__.py
"""
HTTP 层：
- deps    ：Session / 服务依赖
- problem ：统一错误形状
- routers ：/v1/stock
"""
