from portprobe.main import main

main()
