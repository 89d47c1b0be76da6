"""
HTTP 路由層（FastAPI routers）

只負責參數解析與異常轉換，業務邏輯都在 core / services
"""
