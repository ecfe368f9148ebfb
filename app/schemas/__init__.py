# app/schemas/__init__.py
"""请求 / 响应模型。不做聚合导出，按需从具体模块导入。"""
