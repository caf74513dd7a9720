from amqp_store.main import app

app()
