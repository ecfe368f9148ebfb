# app/db/__init__.py
"""
数据库包：
- base    ：ORM Base + 模型注册
- engine  ：DSN 归一 + 引擎工厂（按后端注入方言差异）
- session ：AsyncSession 工厂 + FastAPI 依赖
本包自身不在导入时创建任何引擎。
"""
