from prometheus_client import Counter, Histogram

signals_counter = Counter("bot_signals_total", "Total signals generated", ["direction"])
orders_counter = Counter("bot_orders_total", "Total live orders placed", ["side", "outcome"])
order_latency = Histogram("bot_order_latency_seconds", "Live order latency seconds")
tick_errors_counter = Counter("bot_tick_errors_total", "Ticks that ended in an error", ["kind"])
