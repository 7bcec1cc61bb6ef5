"""
EdgeWatch 路由模块包 (EdgeWatch Router Module Package)

=== 遥测数据路由 (Telemetry Routes) ===
- proxy_metrics.py: 代理指标（手动采集、历史、趋势、服务统计、代理健康）

=== 告警路由 (Alert Routes) ===
- alert_thresholds.py: 阈值规则管理（规则CRUD）
- alerts.py: 告警管理（查询、确认、解决、手动评估）

=== 通知路由 (Notification Routes) ===
- notification_integrations.py: 聊天机器人集成（CRUD、测试发送、发送日志）

所有路由模块在 main.py 中通过 app.include_router() 统一注册，使用 /api/v1/ 前缀。
"""
