COUNTRY_CENTROIDS = {
    "US": (39.8283, -98.5795),
    "CA": (56.1304, -106.3468),
    "GB": (55.3781, -3.436),
    "FR": (46.2276, 2.2137),
    "DE": (51.1657, 10.4515),
    "JP": (36.2048, 138.2529),
    "CN": (35.8617, 104.1954),
    "IN": (20.5937, 78.9629),
    "KR": (35.9078, 127.7669),
    "AU": (-25.2744, 133.7751),
    "BR": (-14.235, -51.9253),
    "MX": (23.6345, -102.5528),
    "SG": (1.3521, 103.8198),
    "HK": (22.3193, 114.1694),
}


def country_centroid(country_code: str | None) -> tuple[float, float] | None:
    """(lat, lng) центра страны или None, если страны нет в таблице."""
    if not country_code:
        return None
    return COUNTRY_CENTROIDS.get(country_code.strip().upper())
