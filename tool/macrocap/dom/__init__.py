"""BeautifulSoup ベースのページモデルと Playwright キャプチャ。"""
