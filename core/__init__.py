"""
核心業務邏輯層

這個 package 包含所有會改變狀態的業務邏輯，包括：
- 狀態機：集中管理回合狀態轉換
- Manager：管理回合生命週期與注單
- Settlement：結算與退款
- Scheduler：定時到期開獎、開新回合
- Locks：並發控制工具
"""
