import logging


def main():
    from speech_coach.config import Config

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn
    uvicorn.run("speech_coach.main:app", host=Config.HOST, port=Config.PORT, log_level="info")


if __name__ == "__main__":
    main()
