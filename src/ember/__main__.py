from ember.main import run

run()
