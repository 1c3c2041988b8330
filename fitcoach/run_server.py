from fitcoach.config import Config, configure_logging


def main():
    configure_logging()

    import uvicorn
    uvicorn.run("fitcoach.main:app", host=Config.HOST, port=Config.PORT, log_level=Config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
