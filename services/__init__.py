"""
服務層

這個 package 包含純計算 / 唯讀查詢邏輯，不負責狀態轉換：
- TaxonomyService：數字對應的顏色、大小與下注選項解析
- PayoffService：單一注單的賠付
- LiabilityService：十個結果的賠付與利潤排名
- OutcomeSelector：系統 / Admin 開獎結果選擇
- RiskService：風控快照與利潤統計
- NamingService：期號生成
"""
