from app.search.schemas import StationResult
from app.services.push_service import AlertNotification


def create_alert_notification(station: StationResult, new_price: int, price_drop: int) -> AlertNotification:
    return AlertNotification(
        title="Fuel Price Drop Alert!",
        body=f"{station.brand} {station.name} now at £{new_price / 100:.2f}/L (down {round(price_drop)}p)",
        data={
            "stationId": station.stationId,
            "newPrice": new_price,
            "priceDrop": price_drop,
        },
    )
