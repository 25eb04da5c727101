from ttc_speed_cache.cache_speeds import main

main()
