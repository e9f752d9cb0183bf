from mentionbot.cli import run

run()
