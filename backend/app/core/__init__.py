"""
核心模块包 (Core Module Package)

EdgeWatch 的基础设施组件：配置管理、数据库连接、Redis、令牌校验、依赖注入与全局异常处理。

Infrastructure components for EdgeWatch: configuration, database connections,
Redis, token validation, dependency injection and global exception handling.
"""
