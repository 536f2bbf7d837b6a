import datetime as dt

from dashboard import portfolio_timeline, price_history_chart


def test_price_history_chart_converts_millisecond_timestamps():
    history = {"prices": [[1714521600000, 60000.0], [1714608000000, 58000.5]], "market_caps": [], "total_volumes": []}

    fig = price_history_chart(history, "Bitcoin")

    assert fig.layout.title.text == "Bitcoin price (USD)"
    [trace] = fig.data
    assert list(trace.y) == [60000.0, 58000.5]
    assert str(trace.x[0]).startswith("2024-05-01")


def test_portfolio_timeline_sorts_samples():
    later = (dt.datetime(2024, 5, 2), 120.0)
    earlier = (dt.datetime(2024, 5, 1), 100.0)

    fig = portfolio_timeline([later, earlier])

    assert list(fig.data[0].y) == [100.0, 120.0]
