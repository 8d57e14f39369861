"""库存领域：商品规格、批次与库存流水"""
