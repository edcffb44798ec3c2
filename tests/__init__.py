from readthrough import main

main.setup()
